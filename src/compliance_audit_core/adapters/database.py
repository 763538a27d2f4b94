"""Durable store connection for the compliance audit core.

This module owns the only SQLAlchemy engine of the process. Audit events and
snapshots share the entity database on purpose: a transition, its audit
event and its snapshot must commit in one transaction.

Key exports:
- init_database(...) - Call at startup to initialize the engine
- close_database() - Call at shutdown to dispose the engine
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from compliance_audit_core.observability import get_logger

logger = get_logger(__name__)

# Module-level engine, initialized by init_database()
_engine: AsyncEngine | None = None


async def init_database(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 2,
    pool_timeout: int = 30,
) -> async_sessionmaker[AsyncSession]:
    """Initialize the database engine and session factory.

    Must be called once at application startup (in the lifespan handler);
    the returned factory backs sqlalchemy_uow_factory().

    Args:
        database_url: SQLAlchemy async URL (postgresql+asyncpg://...).
        pool_size: Connection pool size.
        max_overflow: Max overflow connections above pool_size.
        pool_timeout: Seconds to wait for a connection before raising.

    Returns:
        The session factory.
    """
    global _engine  # noqa: PLW0603

    logger.info("Initializing database engine", pool_size=pool_size, max_overflow=max_overflow)

    _engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        # Audit payloads must not be echoed to logs
        echo=False,
        pool_pre_ping=True,
    )
    session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("Database engine initialized")
    return session_factory


async def close_database() -> None:
    """Dispose the database engine. Call at application shutdown."""
    global _engine  # noqa: PLW0603

    if _engine is not None:
        logger.info("Disposing database engine")
        await _engine.dispose()
        _engine = None
