"""Service settings for compliance-audit-core.

All settings use the COMPLIANCE_AUDIT_ environment prefix and cover:
- Durable store connection (optional; in-memory adapters are used without it)
- Store timeouts and transition retry policy
- Logging output
- Audit history pagination
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for compliance-audit-core.

    Environment variable prefix: COMPLIANCE_AUDIT_
    """

    model_config = SettingsConfigDict(env_prefix="COMPLIANCE_AUDIT_", env_file=".env", extra="ignore")

    service_name: str = "compliance-audit-core"
    environment: str = Field(default="development", description="development | production")

    # -------------------------------------------------------------------------
    # Durable store
    # -------------------------------------------------------------------------

    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy async URL (postgresql+asyncpg://...). "
        "When unset the service runs on the in-memory adapters.",
    )
    db_pool_size: int = Field(default=5, description="Connection pool size.")
    db_max_overflow: int = Field(default=2, description="Max overflow connections above db_pool_size.")
    db_pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for a pooled connection before raising.",
    )

    # -------------------------------------------------------------------------
    # Engine behaviour
    # -------------------------------------------------------------------------

    store_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound for one transactional store interaction. "
        "Expiry fails the operation with PersistenceError.",
    )
    transition_max_retries: int = Field(
        default=3,
        ge=0,
        description="Re-validation attempts after an optimistic concurrency conflict.",
    )

    # -------------------------------------------------------------------------
    # Logging and presentation
    # -------------------------------------------------------------------------

    log_format: str = Field(default="json", description="json | console")
    log_level: str = Field(default="INFO")
    default_page_size: int = Field(default=50, ge=1, le=500, description="Audit history page size.")
