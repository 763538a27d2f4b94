"""SQLAlchemy repositories and unit of work.

Each repository implements the corresponding interface from
core/interfaces.py over one AsyncSession. SqlAlchemyUnitOfWork hands the same
session to all three so entity writes, audit appends and snapshot writes
share one database transaction.

Repositories:
- SqlEntityRepository - versioned entity rows, compare-and-set saves
- SqlAuditEventRepository - INSERT-only audit events plus the field index
- SqlSnapshotRepository - INSERT-only snapshots

Every SQLAlchemyError is translated into PersistenceError; a lost
compare-and-set becomes ConcurrencyConflictError.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Select, exists, inspect, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from compliance_audit_core.audit_trail.events import AuditEvent, AuditQuery
from compliance_audit_core.core.models import (
    ENTITY_RECORDS,
    AuditEventFieldRecord,
    AuditEventRecord,
    EntityRecordMixin,
    SnapshotRecord,
)
from compliance_audit_core.errors import ConcurrencyConflictError, ConfigurationError, PersistenceError
from compliance_audit_core.observability import get_logger
from compliance_audit_core.snapshots.models import Snapshot
from compliance_audit_core.snapshots.store import rehydrate_snapshot
from compliance_audit_core.visibility.policy import (
    public_companies_statement,
    public_products_statement,
    public_products_via_company_statement,
)

logger = get_logger(__name__)


@contextmanager
def translate_errors(operation: str, **context: Any) -> Iterator[None]:
    """Re-raise SQLAlchemy failures as PersistenceError."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Store operation failed", operation=operation, error=str(exc), **context)
        raise PersistenceError(f"{operation} failed: {exc}", operation=operation, **context) from exc


def _record_class(entity_type: str) -> type[EntityRecordMixin]:
    record_class = ENTITY_RECORDS.get(entity_type)
    if record_class is None:
        raise ConfigurationError(f"No table mapped for entity type '{entity_type}'", entity_type=entity_type)
    return record_class


def _column_names(record_class: type) -> set[str]:
    return {attr.key for attr in inspect(record_class).column_attrs}


def _row_values(record: Any) -> dict[str, Any]:
    return {name: getattr(record, name) for name in _column_names(type(record))}


class SqlEntityRepository:
    """Versioned entity persistence over the ``cac_`` entity tables.

    Args:
        session: The unit of work's session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, entity_type: str, entity_id: str, values: dict[str, Any]) -> int:
        record_class = _record_class(entity_type)
        columns = _column_names(record_class)
        payload = {key: value for key, value in values.items() if key in columns}
        payload.update(id=str(entity_id), version=1)
        with translate_errors("entity add", entity_type=entity_type, entity_id=str(entity_id)):
            self._session.add(record_class(**payload))
            await self._session.flush()
        return 1

    async def get(self, entity_type: str, entity_id: str) -> dict[str, Any] | None:
        record_class = _record_class(entity_type)
        stmt = (
            select(record_class)
            .where(record_class.id == str(entity_id))
            .execution_options(populate_existing=True)
        )
        with translate_errors("entity get", entity_type=entity_type, entity_id=str(entity_id)):
            result = await self._session.execute(stmt)
            record = result.scalar_one_or_none()
        return None if record is None else _row_values(record)

    async def save(
        self,
        entity_type: str,
        entity_id: str,
        values: dict[str, Any],
        expected_version: int,
    ) -> int:
        record_class = _record_class(entity_type)
        columns = _column_names(record_class) - {"id", "version", "created_at", "updated_at"}
        payload = {key: value for key, value in values.items() if key in columns}
        stmt = (
            update(record_class)
            .where(record_class.id == str(entity_id), record_class.version == expected_version)
            .values(**payload, version=expected_version + 1)
        )
        with translate_errors("entity save", entity_type=entity_type, entity_id=str(entity_id)):
            result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise ConcurrencyConflictError(entity_type, str(entity_id), expected_version)
        return expected_version + 1

    async def find(self, entity_type: str, **criteria: Any) -> list[dict[str, Any]]:
        """Equality filter over mapped columns.

        Raises:
            ConfigurationError: If a criterion names an unmapped column.
        """
        record_class = _record_class(entity_type)
        unknown = set(criteria) - _column_names(record_class)
        if unknown:
            raise ConfigurationError(f"{entity_type} has no column(s) {sorted(unknown)}", entity_type=entity_type)
        stmt = select(record_class).filter_by(**criteria).order_by(record_class.id)
        return await self._rows(stmt, "entity find", entity_type=entity_type)

    async def public_companies(self) -> list[dict[str, Any]]:
        return await self._rows(public_companies_statement(), "public companies")

    async def public_products(self, via_company: bool = False) -> list[dict[str, Any]]:
        stmt = public_products_via_company_statement() if via_company else public_products_statement()
        return await self._rows(stmt, "public products", via_company=via_company)

    async def _rows(self, stmt: Select[Any], operation: str, **context: Any) -> list[dict[str, Any]]:
        with translate_errors(operation, **context):
            result = await self._session.execute(stmt)
            return [_row_values(record) for record in result.scalars().all()]


def to_audit_record(event: AuditEvent) -> AuditEventRecord:
    return AuditEventRecord(
        id=event.id,
        occurred_at=event.occurred_at,
        actor_id=event.actor_id,
        actor_type=event.actor_type,
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        action=event.action,
        module=event.module,
        old_values=event.old_values,
        new_values=event.new_values,
        description=event.description,
        event_metadata=event.metadata,
        corrects_event_id=event.corrects_event_id,
    )


def to_audit_event(record: AuditEventRecord) -> AuditEvent:
    return AuditEvent(
        id=record.id,
        occurred_at=record.occurred_at,
        actor_id=record.actor_id,
        actor_type=record.actor_type,
        entity_type=record.entity_type,
        entity_id=record.entity_id,
        action=record.action,
        module=record.module,
        old_values=record.old_values or {},
        new_values=record.new_values or {},
        description=record.description or "",
        metadata=record.event_metadata or {},
        corrects_event_id=record.corrects_event_id,
    )


def audit_query_statement(query: AuditQuery) -> Select[tuple[AuditEventRecord]]:
    """Build the SELECT for an AuditQuery. Field filters use the field index."""
    stmt = select(AuditEventRecord)
    if query.entity_type is not None:
        stmt = stmt.where(AuditEventRecord.entity_type == query.entity_type)
    if query.entity_id is not None:
        stmt = stmt.where(AuditEventRecord.entity_id == query.entity_id)
    if query.field is not None:
        stmt = stmt.where(
            exists().where(
                AuditEventFieldRecord.event_id == AuditEventRecord.id,
                AuditEventFieldRecord.field == query.field,
            )
        )
    if query.action_prefix is not None:
        stmt = stmt.where(AuditEventRecord.action.startswith(query.action_prefix))
    if query.actor_id is not None:
        stmt = stmt.where(AuditEventRecord.actor_id == query.actor_id)
    if query.start_time is not None:
        stmt = stmt.where(AuditEventRecord.occurred_at >= query.start_time)
    if query.end_time is not None:
        stmt = stmt.where(AuditEventRecord.occurred_at <= query.end_time)

    if query.ascending:
        return stmt.order_by(AuditEventRecord.occurred_at.asc(), AuditEventRecord.id.asc())
    return stmt.order_by(AuditEventRecord.occurred_at.desc(), AuditEventRecord.id.desc())


class SqlAuditEventRepository:
    """Append-only repository for audit events.

    This repository has no update() or delete() methods because the audit
    trail is immutable. In production the database role should hold only
    INSERT and SELECT grants on ``cac_audit_events`` and
    ``cac_audit_event_fields``.

    Args:
        session: The unit of work's session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, event: AuditEvent) -> str:
        with translate_errors("audit append", event_id=event.id, action=event.action):
            self._session.add(to_audit_record(event))
            for field_name in sorted(event.touched_fields):
                self._session.add(
                    AuditEventFieldRecord(
                        event_id=event.id,
                        field=field_name,
                        entity_type=event.entity_type,
                        entity_id=event.entity_id,
                        occurred_at=event.occurred_at,
                    )
                )
            await self._session.flush()
        return event.id

    async def get(self, event_id: str) -> AuditEvent | None:
        with translate_errors("audit get", event_id=event_id):
            result = await self._session.execute(select(AuditEventRecord).where(AuditEventRecord.id == event_id))
            record = result.scalar_one_or_none()
        return None if record is None else to_audit_event(record)

    async def query(self, query: AuditQuery) -> AsyncIterator[AuditEvent]:
        """Stream matching events from a server-side cursor."""
        with translate_errors("audit query"):
            records = await self._session.stream_scalars(audit_query_statement(query))
        async for record in records:
            yield to_audit_event(record)


def to_snapshot(record: SnapshotRecord) -> Snapshot:
    """Rehydrate a row, cross-checking the content_hash column against the payload."""
    return rehydrate_snapshot(record.id, record.payload, column_hash=record.content_hash)


class SqlSnapshotRepository:
    """Write-once snapshot persistence. Exposes no update or delete.

    Args:
        session: The unit of work's session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def write(self, snapshot: Snapshot) -> str:
        record = SnapshotRecord(
            id=snapshot.id,
            subject_type=snapshot.subject_type,
            subject_id=snapshot.subject_id,
            trigger=snapshot.trigger,
            captured_at=snapshot.captured_at,
            supersedes_id=snapshot.supersedes_id,
            content_hash=snapshot.content_hash,
            payload=snapshot.model_dump(mode="json"),
        )
        with translate_errors("snapshot write", snapshot_id=snapshot.id):
            self._session.add(record)
            await self._session.flush()
        return snapshot.id

    async def get(self, snapshot_id: str) -> Snapshot | None:
        with translate_errors("snapshot get", snapshot_id=snapshot_id):
            result = await self._session.execute(select(SnapshotRecord).where(SnapshotRecord.id == snapshot_id))
            record = result.scalar_one_or_none()
        return None if record is None else to_snapshot(record)

    async def ids_for_subject(self, subject_type: str, subject_id: str) -> list[str]:
        stmt = (
            select(SnapshotRecord.id)
            .where(SnapshotRecord.subject_type == subject_type, SnapshotRecord.subject_id == subject_id)
            .order_by(SnapshotRecord.captured_at.asc(), SnapshotRecord.id)
        )
        with translate_errors("snapshot ids", subject_type=subject_type, subject_id=subject_id):
            result = await self._session.execute(stmt)
            return list(result.scalars().all())

    async def list_for_subject(self, subject_type: str, subject_id: str) -> list[Snapshot]:
        stmt = (
            select(SnapshotRecord)
            .where(SnapshotRecord.subject_type == subject_type, SnapshotRecord.subject_id == subject_id)
            .order_by(SnapshotRecord.captured_at.asc(), SnapshotRecord.id)
        )
        with translate_errors("snapshot list", subject_type=subject_type, subject_id=subject_id):
            result = await self._session.execute(stmt)
            records = result.scalars().all()
        return [to_snapshot(record) for record in records]


class SqlAlchemyUnitOfWork:
    """One database transaction shared by all three repositories.

    Args:
        session_factory: Factory from adapters/database.py.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._session: AsyncSession | None = None
        self._committed = False

    async def __aenter__(self) -> SqlAlchemyUnitOfWork:
        self._session = self._session_factory()
        self.entities = SqlEntityRepository(self._session)
        self.audit_events = SqlAuditEventRepository(self._session)
        self.snapshots = SqlSnapshotRepository(self._session)
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if self._session is None:
            return
        try:
            if not self._committed:
                await self.rollback()
        finally:
            await self._session.close()
            self._session = None

    async def commit(self) -> None:
        if self._session is None:
            raise PersistenceError("Unit of work is not active")
        with translate_errors("commit"):
            await self._session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self._session is None:
            return
        with translate_errors("rollback"):
            await self._session.rollback()


def sqlalchemy_uow_factory(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[], SqlAlchemyUnitOfWork]:
    """Return a zero-argument UnitOfWorkFactory bound to a session factory."""

    def factory() -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork(session_factory)

    return factory
