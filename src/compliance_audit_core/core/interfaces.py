"""Abstract interfaces (Protocol classes) for the persistence collaborator.

Defines the contracts between the engine services and the adapter layer
using typing.Protocol. Services depend on these protocols and never on concrete
adapters, so the in-memory adapters (tests, local runs) and the SQLAlchemy
adapters (production) are interchangeable.

Protocols defined:
- IEntityRepository
- IAuditEventRepository
- ISnapshotRepository
- IUnitOfWork
- UnitOfWorkFactory
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol

from compliance_audit_core.audit_trail.events import AuditEvent, AuditQuery
from compliance_audit_core.snapshots.models import Snapshot


class IEntityRepository(Protocol):
    """Versioned entity persistence.

    Entities are persisted as a mapping of field values plus a ``version``
    counter. Every write is a compare-and-set on that counter.
    """

    async def add(self, entity_type: str, entity_id: str, values: dict[str, Any]) -> int:
        """Insert a new entity and return its initial version.

        Raises:
            PersistenceError: If the entity already exists or the store fails.
        """
        ...

    async def get(self, entity_type: str, entity_id: str) -> dict[str, Any] | None:
        """Return the persisted field values (including ``version``), or None."""
        ...

    async def save(
        self,
        entity_type: str,
        entity_id: str,
        values: dict[str, Any],
        expected_version: int,
    ) -> int:
        """Write field values if the stored version equals expected_version.

        Returns:
            The new version (expected_version + 1).

        Raises:
            ConcurrencyConflictError: If another writer got there first.
            PersistenceError: If the store fails.
        """
        ...

    async def find(self, entity_type: str, **criteria: Any) -> list[dict[str, Any]]:
        """Return persisted entities whose fields equal every criterion, ordered by id."""
        ...

    async def public_companies(self) -> list[dict[str, Any]]:
        """Return the publicly visible companies, ordered by id."""
        ...

    async def public_products(self, via_company: bool = False) -> list[dict[str, Any]]:
        """Return the publicly visible products, ordered by id.

        Both paths apply the same visibility predicate: ``via_company``
        starts from the public companies, otherwise each product is checked
        against its own company.
        """
        ...


class IAuditEventRepository(Protocol):
    """Append-only audit event persistence. No update or delete exists."""

    async def append(self, event: AuditEvent) -> str:
        """Append an event and return its id.

        Raises:
            PersistenceError: If the store is unavailable.
        """
        ...

    async def get(self, event_id: str) -> AuditEvent | None:
        ...

    def query(self, query: AuditQuery) -> AsyncIterator[AuditEvent]:
        """Lazily yield matching events, occurred_at descending by default."""
        ...


class ISnapshotRepository(Protocol):
    """Write-once snapshot persistence. No update or delete exists."""

    async def write(self, snapshot: Snapshot) -> str:
        """Persist a snapshot and return its id.

        Raises:
            PersistenceError: If a snapshot with the id already exists or the
                store fails.
        """
        ...

    async def get(self, snapshot_id: str) -> Snapshot | None:
        """Rehydrate a stored snapshot exactly as persisted.

        Raises:
            TamperDetectedError: If the stored record no longer fits the
                snapshot schema.
        """
        ...

    async def ids_for_subject(self, subject_type: str, subject_id: str) -> list[str]:
        """Return the ids of every snapshot for a subject, oldest first."""
        ...

    async def list_for_subject(self, subject_type: str, subject_id: str) -> list[Snapshot]:
        """Return every snapshot for a subject, oldest first."""
        ...


class IUnitOfWork(Protocol):
    """A single atomic transaction spanning entities, events and snapshots.

    Used as ``async with factory() as uow: ...; await uow.commit()``. Leaving
    the block without commit() discards every staged write.
    """

    entities: IEntityRepository
    audit_events: IAuditEventRepository
    snapshots: ISnapshotRepository

    async def __aenter__(self) -> IUnitOfWork:
        ...

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        ...

    async def commit(self) -> None:
        """Atomically apply every staged write.

        Raises:
            ConcurrencyConflictError: If a compare-and-set check fails.
            PersistenceError: If the store fails; nothing is applied.
        """
        ...

    async def rollback(self) -> None:
        ...


UnitOfWorkFactory = Callable[[], IUnitOfWork]
