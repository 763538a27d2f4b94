"""Write-once in-memory snapshot store and record rehydration.

Snapshots are kept as their JSON-mode dump, the same shape a database row
holds, and rehydrated on every read. Verification therefore always runs
against what was stored, never against an object still in memory.

A stored record that no longer fits the Snapshot schema has been altered
after capture, so rehydrate_snapshot() reports it as tampering rather than as
a validation failure.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from compliance_audit_core.errors import PersistenceError, TamperDetectedError
from compliance_audit_core.snapshots.canonical import content_hash, hashes_match
from compliance_audit_core.snapshots.models import Snapshot


def rehydrate_snapshot(snapshot_id: str, record: Any, column_hash: str | None = None) -> Snapshot:
    """Rebuild a Snapshot from its stored JSON form.

    Args:
        snapshot_id: The id the record is stored under.
        record: The stored JSON payload.
        column_hash: The separately indexed content hash, when the store
            keeps one next to the payload.

    Raises:
        TamperDetectedError: If the record no longer fits the snapshot
            schema, or its hash disagrees with ``column_hash``.
    """
    payload_hash = record.get("content_hash") if isinstance(record, Mapping) else None
    stored_hash = payload_hash if isinstance(payload_hash, str) else (column_hash or "")
    try:
        snapshot = Snapshot.model_validate(record)
    except ValidationError as exc:
        content = (
            {key: value for key, value in record.items() if key != "content_hash"}
            if isinstance(record, Mapping)
            else record
        )
        raise TamperDetectedError(
            snapshot_id=snapshot_id,
            stored_hash=stored_hash,
            computed_hash=content_hash(content),
            reason=f"no longer matches the snapshot schema ({exc.error_count()} invalid fields)",
        ) from exc
    if column_hash is not None and not hashes_match(column_hash, snapshot.content_hash):
        raise TamperDetectedError(
            snapshot_id=snapshot_id,
            stored_hash=column_hash,
            computed_hash=snapshot.content_hash,
            reason="payload hash differs from the indexed content hash",
        )
    return snapshot


class InMemorySnapshotStore:
    """Write-once snapshot store. Exposes no update or delete operation."""

    def __init__(self) -> None:
        self._records: dict[str, Any] = {}
        self._order: list[str] = []

    def contains(self, snapshot_id: str) -> bool:
        return snapshot_id in self._records

    async def write(self, snapshot: Snapshot) -> str:
        if snapshot.id in self._records:
            raise PersistenceError(f"Snapshot {snapshot.id} already exists", snapshot_id=snapshot.id)
        self._records[snapshot.id] = snapshot.model_dump(mode="json")
        self._order.append(snapshot.id)
        return snapshot.id

    async def get(self, snapshot_id: str) -> Snapshot | None:
        if snapshot_id not in self._records:
            return None
        return rehydrate_snapshot(snapshot_id, copy.deepcopy(self._records[snapshot_id]))

    async def ids_for_subject(self, subject_type: str, subject_id: str) -> list[str]:
        return [snapshot_id for snapshot_id in self._order if self._belongs_to(snapshot_id, subject_type, subject_id)]

    async def list_for_subject(self, subject_type: str, subject_id: str) -> list[Snapshot]:
        return [
            rehydrate_snapshot(snapshot_id, copy.deepcopy(self._records[snapshot_id]))
            for snapshot_id in await self.ids_for_subject(subject_type, subject_id)
        ]

    def _belongs_to(self, snapshot_id: str, subject_type: str, subject_id: str) -> bool:
        record = self._records[snapshot_id]
        if not isinstance(record, Mapping):
            return False
        return record.get("subject_type") == subject_type and record.get("subject_id") == subject_id

    def count(self) -> int:
        return len(self._records)
