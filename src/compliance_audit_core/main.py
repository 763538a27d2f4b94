"""compliance-audit-core service entry point.

Initializes the FastAPI application with:
- Structured logging (structlog)
- The durable store (SQLAlchemy async) or, without a database URL, the
  in-memory adapters
- The state machine, audit trail, snapshot engine and business actions,
  wired onto ``app.state``
- A Prometheus metrics endpoint
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Response

from compliance_audit_core.adapters.database import close_database, init_database
from compliance_audit_core.adapters.memory import InMemoryDatabase
from compliance_audit_core.adapters.repositories import sqlalchemy_uow_factory
from compliance_audit_core.api.routes import compliance_error_handler, router
from compliance_audit_core.audit_trail.logger import AuditLogger
from compliance_audit_core.audit_trail.trail import AuditTrail
from compliance_audit_core.core.services import ComplianceActions, EntityService
from compliance_audit_core.domain.definitions import build_registry
from compliance_audit_core.errors import ComplianceAuditError
from compliance_audit_core.observability import METRICS_CONTENT_TYPE, AuditMetrics, configure_logging, get_logger
from compliance_audit_core.observability import metrics as default_metrics
from compliance_audit_core.settings import Settings
from compliance_audit_core.snapshots.engine import SnapshotEngine
from compliance_audit_core.state_machine.engine import StateMachine

logger = get_logger(__name__)


def wire_services(
    state: Any,
    uow_factory: Any,
    settings: Settings,
    metrics: AuditMetrics | None = None,
) -> None:
    """Construct the engine components and attach them to ``app.state``.

    Args:
        state: The application's ``state`` namespace.
        uow_factory: Zero-argument unit-of-work factory.
        settings: Service settings.
        metrics: Metrics holder; defaults to the process-wide instance.
    """
    metrics = metrics or default_metrics
    machine = StateMachine.from_settings(build_registry(), uow_factory, settings, metrics=metrics)
    trail = AuditTrail(
        uow_factory,
        default_page_size=settings.default_page_size,
        store_timeout_seconds=settings.store_timeout_seconds,
    )
    snapshot_engine = SnapshotEngine(
        uow_factory,
        store_timeout_seconds=settings.store_timeout_seconds,
        metrics=metrics,
    )
    entities = EntityService(
        machine,
        uow_factory,
        AuditLogger(trail, metrics=metrics),
        store_timeout_seconds=settings.store_timeout_seconds,
    )

    state.settings = settings
    state.metrics = metrics
    state.state_machine = machine
    state.audit_trail = trail
    state.snapshot_engine = snapshot_engine
    state.entity_service = entities
    state.compliance_actions = ComplianceActions(machine, entities, snapshot_engine)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application."""
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        configure_logging(settings.log_format, settings.log_level)

        if settings.database_url:
            logger.info("Initializing database", service=settings.service_name)
            session_factory = await init_database(
                settings.database_url,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_timeout=settings.db_pool_timeout,
            )
            uow_factory: Any = sqlalchemy_uow_factory(session_factory)
        else:
            logger.warning(
                "No database_url configured, running on in-memory adapters",
                service=settings.service_name,
            )
            uow_factory = InMemoryDatabase().unit_of_work

        wire_services(app.state, uow_factory, settings)
        logger.info("compliance-audit-core startup complete", environment=settings.environment)

        yield

        logger.info("Shutting down compliance-audit-core")
        await close_database()

    app = FastAPI(title=settings.service_name, version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(ComplianceAuditError, compliance_error_handler)  # type: ignore[arg-type]
    app.include_router(router, prefix="/api/v1")

    @app.get("/metrics", include_in_schema=False)
    async def prometheus_metrics() -> Response:
        return Response(content=app.state.metrics.render(), media_type=METRICS_CONTENT_TYPE)

    return app
