"""Audit trail: append-only record of what changed, who changed it, and when.

Exports the event schema, the in-memory store, the primary AuditTrail
service and the best-effort AuditLogger.
"""

from __future__ import annotations

from compliance_audit_core.audit_trail.event_store import InMemoryAuditEventStore
from compliance_audit_core.audit_trail.events import (
    SYSTEM_ACTOR_ID,
    SYSTEM_ACTOR_TYPE,
    ActorContext,
    AuditEvent,
    AuditHistoryPage,
    AuditQuery,
    make_event,
    resolve_actor,
)
from compliance_audit_core.audit_trail.logger import AuditLogger, diff_values
from compliance_audit_core.audit_trail.trail import CORRECTION_ACTION, AuditTrail

__all__ = [
    "ActorContext",
    "AuditEvent",
    "AuditHistoryPage",
    "AuditLogger",
    "AuditQuery",
    "AuditTrail",
    "CORRECTION_ACTION",
    "InMemoryAuditEventStore",
    "SYSTEM_ACTOR_ID",
    "SYSTEM_ACTOR_TYPE",
    "diff_values",
    "make_event",
    "resolve_actor",
]
