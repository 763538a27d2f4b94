"""Audit trail read/write orchestration.

AuditTrail is the primary-path entry point: appends raise on failure and the
caller decides what that means. AuditLogger (audit_trail/logger.py) wraps it
for secondary concerns where audit writes are best-effort.

IMPORTANT: There are NO update or delete operations here. A correction is a
new ``audit.correction`` event that references the corrected event by id.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import TYPE_CHECKING, Any

from compliance_audit_core.audit_trail.events import (
    ActorContext,
    AuditEvent,
    AuditHistoryPage,
    AuditQuery,
    make_event,
)
from compliance_audit_core.errors import NotFoundError
from compliance_audit_core.observability import get_logger
from compliance_audit_core.timeouts import DEFAULT_STORE_TIMEOUT_SECONDS, bounded, bounded_iter

if TYPE_CHECKING:
    from compliance_audit_core.core.interfaces import UnitOfWorkFactory

logger = get_logger(__name__)

CORRECTION_ACTION = "audit.correction"


class AuditTrail:
    """Append-only audit trail over a unit-of-work factory.

    Args:
        uow_factory: Callable returning a fresh IUnitOfWork per operation.
        default_page_size: Page size used by history() when none is given.
        store_timeout_seconds: Upper bound for every store interaction.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        default_page_size: int = 50,
        store_timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS,
    ) -> None:
        self._uow_factory = uow_factory
        self._default_page_size = default_page_size
        self._timeout = store_timeout_seconds

    async def append(self, event: AuditEvent) -> str:
        """Append one event in its own transaction and return its id.

        Raises:
            PersistenceError: If the store is unavailable or times out. Never
                swallowed here.
        """
        event_id = await bounded(self._append(event), self._timeout, "Audit store", event_id=event.id)

        logger.info(
            "Audit event appended",
            event_id=event_id,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            action=event.action,
        )
        return event_id

    async def _append(self, event: AuditEvent) -> str:
        async with self._uow_factory() as uow:
            event_id = await uow.audit_events.append(event)
            await uow.commit()
        return event_id

    async def get(self, event_id: str) -> AuditEvent:
        """Return a single event.

        Raises:
            NotFoundError: If no event exists with the id.
        """
        async with self._uow_factory() as uow:
            event = await bounded(uow.audit_events.get(event_id), self._timeout, "Audit store", event_id=event_id)
        if event is None:
            raise NotFoundError(resource="AuditEvent", resource_id=event_id)
        return event

    async def query(self, query: AuditQuery) -> AsyncIterator[AuditEvent]:
        """Lazily yield events matching the filter (newest first by default)."""
        async with self._uow_factory() as uow:
            steps = bounded_iter(uow.audit_events.query(query), self._timeout, "Audit store")
            async with aclosing(steps) as events:
                async for event in events:
                    yield event

    async def history(
        self,
        entity_type: str,
        entity_id: str,
        page: int = 1,
        page_size: int | None = None,
    ) -> AuditHistoryPage:
        """Return one page of an entity's reverse-chronological history.

        Args:
            entity_type: Entity type key.
            entity_id: Entity identifier.
            page: 1-indexed page number.
            page_size: Events per page; defaults to the configured size.
        """
        size = page_size or self._default_page_size
        page = max(page, 1)
        offset = (page - 1) * size
        items: list[AuditEvent] = []
        has_more = False

        position = 0
        query = AuditQuery(entity_type=entity_type, entity_id=str(entity_id))
        async with aclosing(self.query(query)) as events:
            async for event in events:
                if position >= offset + size:
                    has_more = True
                    break
                if position >= offset:
                    items.append(event)
                position += 1

        return AuditHistoryPage(
            entity_type=entity_type,
            entity_id=str(entity_id),
            page=page,
            page_size=size,
            items=items,
            has_more=has_more,
        )

    async def record_correction(
        self,
        corrected_event_id: str,
        actor: ActorContext | None,
        description: str,
        corrected_values: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Append a correction referencing an existing event.

        The original event is left untouched; readers reconcile the two via
        ``corrects_event_id``.

        Raises:
            NotFoundError: If the corrected event does not exist.
        """
        original = await self.get(corrected_event_id)
        correction = make_event(
            actor=actor,
            entity_type=original.entity_type,
            entity_id=original.entity_id,
            action=CORRECTION_ACTION,
            module=original.module,
            old_values=dict(original.new_values),
            new_values=corrected_values or {},
            description=description,
            metadata={**(metadata or {}), "corrected_action": original.action},
            corrects_event_id=original.id,
        )
        await self.append(correction)
        logger.warning(
            "Audit correction recorded",
            correction_id=correction.id,
            corrected_event_id=original.id,
            entity_type=original.entity_type,
            entity_id=original.entity_id,
        )
        return correction
