"""Alembic migration environment for compliance-audit-core.

Autogenerate compares against ``Base.metadata`` from ``core.models``: the
entity tables (``cac_companies``, ``cac_products``, ``cac_investments``,
``cac_disclosures``), the audit tables (``cac_audit_events`` and its
``cac_audit_event_fields`` index) and the sealed ``cac_snapshots`` table.
They share one database so a tier transition, its audit event and its
snapshot commit in a single transaction.

Only ``cac_`` tables are managed; anything else in a shared schema is left
alone. Revision state is kept in ``cac_alembic_version``. The URL comes from
alembic.ini or, when unset there, ``COMPLIANCE_AUDIT_DATABASE_URL`` via
``Settings``. JSON payload columns render as JSONB on PostgreSQL.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from compliance_audit_core.core.models import Base
from compliance_audit_core.settings import Settings

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

if not config.get_main_option("sqlalchemy.url"):
    database_url = Settings().database_url
    if database_url:
        config.set_main_option("sqlalchemy.url", database_url)

target_metadata = Base.metadata

TABLE_PREFIX = "cac_"
VERSION_TABLE = "cac_alembic_version"


def include_object(obj: object, name: str | None, type_: str, reflected: bool, compare_to: object) -> bool:
    """Restrict autogenerate to this project's tables."""
    if type_ == "table":
        return bool(name and name.startswith(TABLE_PREFIX))
    return True


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (generate SQL without DB connection)."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        version_table=VERSION_TABLE,
        include_object=include_object,
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        version_table=VERSION_TABLE,
        include_object=include_object,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Run migrations in async mode (asyncpg connections)."""
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
