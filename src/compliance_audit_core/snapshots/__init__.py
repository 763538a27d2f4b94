"""Snapshot engine: tamper-evident point-in-time records of what a user was shown."""

from __future__ import annotations

from compliance_audit_core.snapshots.assembler import (
    DisclosureSource,
    RiskFlagSource,
    SnapshotContextAssembler,
)
from compliance_audit_core.snapshots.canonical import canonical_json, content_hash, hashes_match, normalize
from compliance_audit_core.snapshots.engine import CORRECTION_TRIGGER, SnapshotEngine, seal
from compliance_audit_core.snapshots.models import (
    Acknowledgement,
    CompanyVerificationSummary,
    DisclosureRef,
    RiskFlag,
    Snapshot,
    SnapshotContext,
    SnapshotDifference,
    SnapshotExport,
    SnapshotIntegrityDetail,
    SnapshotVerification,
    SubjectVerificationSummary,
)
from compliance_audit_core.snapshots.store import InMemorySnapshotStore, rehydrate_snapshot

__all__ = [
    "Acknowledgement",
    "CORRECTION_TRIGGER",
    "CompanyVerificationSummary",
    "DisclosureRef",
    "DisclosureSource",
    "InMemorySnapshotStore",
    "RiskFlag",
    "RiskFlagSource",
    "Snapshot",
    "SnapshotContext",
    "SnapshotContextAssembler",
    "SnapshotDifference",
    "SnapshotEngine",
    "SnapshotExport",
    "SnapshotIntegrityDetail",
    "SnapshotVerification",
    "SubjectVerificationSummary",
    "canonical_json",
    "content_hash",
    "hashes_match",
    "normalize",
    "rehydrate_snapshot",
    "seal",
]
