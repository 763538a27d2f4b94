"""In-memory persistence adapter.

Implements the IUnitOfWork protocol over in-process stores so the engine can
run hermetically (tests, local development) with the same transactional
semantics as the SQLAlchemy adapter:

- every write inside a unit of work is staged, nothing is visible until commit
- commit re-checks every compare-and-set under one lock, then applies
  entity writes, audit appends and snapshot writes together
- leaving the block without commit discards the staged writes
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import AsyncIterator
from typing import Any

from compliance_audit_core.audit_trail.event_store import InMemoryAuditEventStore
from compliance_audit_core.audit_trail.events import AuditEvent, AuditQuery
from compliance_audit_core.errors import ConcurrencyConflictError, PersistenceError
from compliance_audit_core.snapshots.models import Snapshot
from compliance_audit_core.snapshots.store import InMemorySnapshotStore
from compliance_audit_core.visibility.policy import (
    publicly_visible_companies,
    publicly_visible_products,
    publicly_visible_products_via_companies,
)

COMPANY = "company"
PRODUCT = "product"


class InMemoryEntityStore:
    """Versioned entity rows keyed by (entity_type, entity_id)."""

    def __init__(self) -> None:
        self._rows: dict[tuple[str, str], dict[str, Any]] = {}

    def version_of(self, entity_type: str, entity_id: str) -> int | None:
        row = self._rows.get((entity_type, entity_id))
        return None if row is None else row["version"]

    def read(self, entity_type: str, entity_id: str) -> dict[str, Any] | None:
        row = self._rows.get((entity_type, entity_id))
        return None if row is None else copy.deepcopy(row)

    def write(self, entity_type: str, entity_id: str, values: dict[str, Any], version: int) -> None:
        row = self._rows.setdefault((entity_type, entity_id), {})
        row.update(copy.deepcopy(values))
        row.update(id=entity_id, version=version)

    def rows(self, entity_type: str) -> list[dict[str, Any]]:
        """Committed rows of one type, ordered by id."""
        return sorted(
            (copy.deepcopy(row) for (row_type, _), row in self._rows.items() if row_type == entity_type),
            key=lambda row: row["id"],
        )


class InMemoryDatabase:
    """Bundle of in-memory stores sharing one commit lock.

    Usage:
        database = InMemoryDatabase()
        engine = StateMachine(registry, uow_factory=database.unit_of_work)
    """

    def __init__(self) -> None:
        self.entities = InMemoryEntityStore()
        self.audit_events = InMemoryAuditEventStore()
        self.snapshots = InMemorySnapshotStore()
        self.commit_lock = asyncio.Lock()

    def unit_of_work(self) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(self)


class _StagedEntities:
    def __init__(self, database: InMemoryDatabase) -> None:
        self._database = database
        # (entity_type, entity_id) -> (expected_version or None for insert, values)
        self.writes: dict[tuple[str, str], tuple[int | None, dict[str, Any]]] = {}

    async def add(self, entity_type: str, entity_id: str, values: dict[str, Any]) -> int:
        key = (entity_type, entity_id)
        if self._database.entities.version_of(entity_type, entity_id) is not None or key in self.writes:
            raise PersistenceError(f"{entity_type} {entity_id} already exists", entity_id=entity_id)
        self.writes[key] = (None, dict(values))
        return 1

    async def get(self, entity_type: str, entity_id: str) -> dict[str, Any] | None:
        row = self._database.entities.read(entity_type, entity_id)
        staged = self.writes.get((entity_type, entity_id))
        if staged is not None:
            expected, values = staged
            row = {**(row or {}), **copy.deepcopy(values), "version": 1 if expected is None else expected + 1}
        return row

    async def save(
        self,
        entity_type: str,
        entity_id: str,
        values: dict[str, Any],
        expected_version: int,
    ) -> int:
        current = self._database.entities.version_of(entity_type, entity_id)
        if current != expected_version:
            raise ConcurrencyConflictError(entity_type, entity_id, expected_version)
        self.writes[(entity_type, entity_id)] = (expected_version, dict(values))
        return expected_version + 1

    async def find(self, entity_type: str, **criteria: Any) -> list[dict[str, Any]]:
        return [
            row
            for row in self._database.entities.rows(entity_type)
            if all(row.get(name) == value for name, value in criteria.items())
        ]

    async def public_companies(self) -> list[dict[str, Any]]:
        return publicly_visible_companies(self._database.entities.rows(COMPANY))

    async def public_products(self, via_company: bool = False) -> list[dict[str, Any]]:
        companies = self._database.entities.rows(COMPANY)
        products = self._database.entities.rows(PRODUCT)
        if via_company:
            return publicly_visible_products_via_companies(companies, products)
        return publicly_visible_products(products, companies)


class _StagedAuditEvents:
    def __init__(self, database: InMemoryDatabase) -> None:
        self._database = database
        self.pending: list[AuditEvent] = []

    async def append(self, event: AuditEvent) -> str:
        self.pending.append(event)
        return event.id

    async def get(self, event_id: str) -> AuditEvent | None:
        for event in self.pending:
            if event.id == event_id:
                return event
        return await self._database.audit_events.get(event_id)

    def query(self, query: AuditQuery) -> AsyncIterator[AuditEvent]:
        return self._database.audit_events.query(query)


class _StagedSnapshots:
    def __init__(self, database: InMemoryDatabase) -> None:
        self._database = database
        self.pending: list[Snapshot] = []

    async def write(self, snapshot: Snapshot) -> str:
        self.pending.append(snapshot)
        return snapshot.id

    async def get(self, snapshot_id: str) -> Snapshot | None:
        return await self._database.snapshots.get(snapshot_id)

    async def ids_for_subject(self, subject_type: str, subject_id: str) -> list[str]:
        return await self._database.snapshots.ids_for_subject(subject_type, subject_id)

    async def list_for_subject(self, subject_type: str, subject_id: str) -> list[Snapshot]:
        return await self._database.snapshots.list_for_subject(subject_type, subject_id)


class InMemoryUnitOfWork:
    """One atomic transaction against an InMemoryDatabase."""

    def __init__(self, database: InMemoryDatabase) -> None:
        self._database = database
        self.entities = _StagedEntities(database)
        self.audit_events = _StagedAuditEvents(database)
        self.snapshots = _StagedSnapshots(database)
        self._committed = False

    async def __aenter__(self) -> InMemoryUnitOfWork:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if not self._committed:
            await self.rollback()

    async def commit(self) -> None:
        database = self._database
        async with database.commit_lock:
            # Validate everything before applying anything.
            for (entity_type, entity_id), (expected, _) in self.entities.writes.items():
                current = database.entities.version_of(entity_type, entity_id)
                if expected is None and current is not None:
                    raise PersistenceError(f"{entity_type} {entity_id} already exists", entity_id=entity_id)
                if expected is not None and current != expected:
                    raise ConcurrencyConflictError(entity_type, entity_id, expected)
            for event in self.audit_events.pending:
                if await database.audit_events.get(event.id) is not None:
                    raise PersistenceError(f"Audit event {event.id} already exists", event_id=event.id)
            for snapshot in self.snapshots.pending:
                if database.snapshots.contains(snapshot.id):
                    raise PersistenceError(f"Snapshot {snapshot.id} already exists", snapshot_id=snapshot.id)

            for (entity_type, entity_id), (expected, values) in self.entities.writes.items():
                database.entities.write(entity_type, entity_id, values, 1 if expected is None else expected + 1)
            for event in self.audit_events.pending:
                await database.audit_events.append(event)
            for snapshot in self.snapshots.pending:
                await database.snapshots.write(snapshot)
            self._committed = True

    async def rollback(self) -> None:
        self.entities.writes.clear()
        self.audit_events.pending.clear()
        self.snapshots.pending.clear()
