"""Pydantic response schemas for the read-only compliance audit API.

All API outputs use Pydantic models, never raw dicts.

Resources:
- AuditEvent - reverse-chronological, paginated entity history
- Snapshot - immutable export document and integrity verification
- Error - error envelope shared by every failure response
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from compliance_audit_core.audit_trail.events import AuditEvent, AuditHistoryPage
from compliance_audit_core.snapshots.models import SnapshotExport, SnapshotVerification


# ---------------------------------------------------------------------------
# Audit history schemas
# ---------------------------------------------------------------------------


class AuditEventResponse(BaseModel):
    """One audit event as shown to presentation collaborators."""

    id: str
    occurred_at: datetime
    actor_id: str = Field(description="Actor id, or 'system' for the sentinel actor")
    actor_type: str
    action: str = Field(description="Dot-notation action, e.g. investment.complete")
    module: str
    old_values: dict[str, Any]
    new_values: dict[str, Any]
    description: str
    metadata: dict[str, Any]
    corrects_event_id: str | None = None

    @classmethod
    def from_event(cls, event: AuditEvent) -> "AuditEventResponse":
        return cls(
            id=event.id,
            occurred_at=event.occurred_at,
            actor_id=event.actor_id,
            actor_type=event.actor_type,
            action=event.action,
            module=event.module,
            old_values=event.old_values,
            new_values=event.new_values,
            description=event.description,
            metadata=event.metadata,
            corrects_event_id=event.corrects_event_id,
        )


class AuditHistoryResponse(BaseModel):
    """A page of an entity's audit history, newest first."""

    entity_type: str
    entity_id: str
    page: int
    page_size: int
    has_more: bool
    items: list[AuditEventResponse]

    @classmethod
    def from_page(cls, page: AuditHistoryPage) -> "AuditHistoryResponse":
        return cls(
            entity_type=page.entity_type,
            entity_id=page.entity_id,
            page=page.page,
            page_size=page.page_size,
            has_more=page.has_more,
            items=[AuditEventResponse.from_event(event) for event in page.items],
        )


# ---------------------------------------------------------------------------
# Snapshot schemas
# ---------------------------------------------------------------------------


class SnapshotVerificationResponse(BaseModel):
    """Successful integrity verification of a stored snapshot."""

    snapshot_id: str
    verified: bool
    content_hash: str = Field(description="SHA-256 hex digest recomputed from the stored content")
    disclosures_verified: int
    verified_at: datetime

    @classmethod
    def from_verification(cls, verification: SnapshotVerification) -> "SnapshotVerificationResponse":
        return cls(**verification.model_dump())


class SnapshotExportResponse(BaseModel):
    """Immutable snapshot document suitable for download or print."""

    snapshot_id: str
    subject_type: str
    subject_id: str
    trigger: str
    captured_at: datetime
    supersedes_id: str | None
    hash_algorithm: str
    content_hash: str
    content: dict[str, Any]
    exported_at: datetime

    @classmethod
    def from_export(cls, export: SnapshotExport) -> "SnapshotExportResponse":
        return cls(**export.model_dump())


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Error envelope. ``severity`` is ``critical`` for tamper detection."""

    error: str
    severity: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
