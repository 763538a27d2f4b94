"""Append-only in-memory audit event store.

Stores AuditEvent instances sorted by (occurred_at, id). All write operations
are append-only. No updates or deletes are permitted.

A secondary index on (entity_type, entity_id, field) serves field-level
history queries without scanning every event. Production deployments use the
SQLAlchemy adapter in adapters/repositories.py, which keeps the same index as
the ``audit_event_fields`` table and the same (occurred_at, id) ordering;
this implementation keeps tests hermetic.
"""

from __future__ import annotations

import bisect
from collections.abc import AsyncIterator

from compliance_audit_core.audit_trail.events import AuditEvent, AuditQuery
from compliance_audit_core.errors import PersistenceError


def _timestamp(event: AuditEvent) -> float:
    return event.occurred_at.timestamp()


def _sort_key(event: AuditEvent) -> tuple[float, str]:
    # Equal timestamps break on id, matching ORDER BY occurred_at, id.
    return _timestamp(event), event.id


class InMemoryAuditEventStore:
    """Append-only event store for AuditEvent instances.

    Events are kept in (occurred_at, id) ascending order; range and
    reverse-chronological reads are O(log n) plus the size of the result.
    """

    def __init__(self) -> None:
        self._events: list[AuditEvent] = []
        self._by_id: dict[str, AuditEvent] = {}
        # { (entity_type, entity_id, field): [event_id, ...] } in append order
        self._field_index: dict[tuple[str, str, str], list[str]] = {}

    async def append(self, event: AuditEvent) -> str:
        """Append an event and return its id.

        Raises:
            PersistenceError: If an event with the same id already exists.
        """
        if event.id in self._by_id:
            raise PersistenceError(f"Audit event {event.id} already exists", event_id=event.id)

        bisect.insort(self._events, event, key=_sort_key)
        self._by_id[event.id] = event

        for field_name in event.touched_fields:
            self._field_index.setdefault((event.entity_type, event.entity_id, field_name), []).append(
                event.id
            )
        return event.id

    async def get(self, event_id: str) -> AuditEvent | None:
        return self._by_id.get(event_id)

    def _candidates(self, query: AuditQuery) -> list[AuditEvent]:
        if query.field is not None and query.entity_type is not None and query.entity_id is not None:
            ids = self._field_index.get((query.entity_type, query.entity_id, query.field), [])
            events = sorted((self._by_id[i] for i in ids), key=_sort_key)
        else:
            low = 0 if query.start_time is None else bisect.bisect_left(
                self._events, query.start_time.timestamp(), key=_timestamp
            )
            high = len(self._events) if query.end_time is None else bisect.bisect_right(
                self._events, query.end_time.timestamp(), key=_timestamp
            )
            events = self._events[low:high]
        return events if query.ascending else list(reversed(events))

    async def query(self, query: AuditQuery) -> AsyncIterator[AuditEvent]:
        """Lazily yield events matching the filter.

        Ordered by occurred_at descending unless ``query.ascending`` is set;
        events sharing a timestamp follow their id in the same direction.
        The candidate list is captured up front so concurrent appends never
        disturb an in-flight iteration.
        """
        for event in self._candidates(query):
            if query.matches(event):
                yield event

    def count(self) -> int:
        return len(self._events)
