"""Snapshot schema: the frozen record of what a user was shown.

A Snapshot captures the subject's surrounding compliance context at a
triggering business event (an investment completing): the company's state,
the exact disclosure versions shown, active risk flags, the acknowledgements
granted, and the computed financial terms. Its ``content_hash`` is the
SHA-256 digest of the canonical serialization of every other field.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DisclosureRef(BaseModel):
    """An immutable disclosure version as shown to the user.

    Attributes:
        disclosure_id: The disclosure the version belongs to.
        module_code: Disclosure module (``financials``, ``risk_factors``).
        version_id: Identifier of the locked disclosure version.
        version_number: Human-facing version number.
        version_hash: SHA-256 of the canonical version data, set at approval.
        approved_at: When the version was approved.
        data: The version content. When present, its hash is re-checked on
            verification.
    """

    model_config = ConfigDict(frozen=True)

    disclosure_id: str
    module_code: str
    version_id: str | None = None
    version_number: int | None = None
    version_hash: str | None = None
    approved_at: datetime | None = None
    data: dict[str, Any] | None = None


class RiskFlag(BaseModel):
    """A platform risk flag active and investor-visible at capture time."""

    model_config = ConfigDict(frozen=True)

    flag_type: str
    severity: str
    category: str | None = None
    description: str = ""
    detected_at: datetime | None = None


class Acknowledgement(BaseModel):
    """A risk or terms acknowledgement granted by the user."""

    model_config = ConfigDict(frozen=True)

    acknowledgement_type: str
    granted_at: datetime
    version: str | None = None


class SnapshotContext(BaseModel):
    """Everything the caller supplies to be frozen into a snapshot."""

    model_config = ConfigDict(frozen=True)

    company_state: dict[str, Any] = Field(default_factory=dict)
    disclosures_shown: list[DisclosureRef] = Field(default_factory=list)
    risk_flags: list[RiskFlag] = Field(default_factory=list)
    acknowledgements: list[Acknowledgement] = Field(default_factory=list)
    financial_terms: dict[str, Any] = Field(default_factory=dict)


class Snapshot(BaseModel):
    """Immutable, hashed point-in-time capture of a subject and its context.

    Attributes:
        id: UUID v4 string.
        subject_type: Entity type of the subject (``investment``).
        subject_id: Identifier of the subject.
        trigger: Business event that caused the capture.
        captured_at: UTC capture timestamp.
        company_state: Compliance state of the company at capture.
        disclosures_shown: Disclosure versions shown to the user.
        risk_flags: Risk flags active at capture.
        acknowledgements: Acknowledgement records.
        financial_terms: Computed financial terms.
        supersedes_id: For corrections, the snapshot being superseded.
        content_hash: SHA-256 of the canonical form of all fields above.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    subject_type: str
    subject_id: str
    trigger: str
    captured_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    company_state: dict[str, Any]
    disclosures_shown: list[DisclosureRef] = Field(default_factory=list)
    risk_flags: list[RiskFlag] = Field(default_factory=list)
    acknowledgements: list[Acknowledgement] = Field(default_factory=list)
    financial_terms: dict[str, Any]
    supersedes_id: str | None = None
    content_hash: str

    def hashable_content(self) -> dict[str, Any]:
        """Return every field covered by the content hash."""
        return self.model_dump(mode="python", exclude={"content_hash"})


class SnapshotVerification(BaseModel):
    """Outcome of a successful integrity verification."""

    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    verified: bool
    content_hash: str
    disclosures_verified: int
    verified_at: datetime


class SnapshotDifference(BaseModel):
    """One disclosure that differs between two snapshots.

    ``change_type`` is ``added``, ``removed`` or ``version_changed``.
    """

    model_config = ConfigDict(frozen=True)

    disclosure_id: str
    change_type: str
    module_code: str
    old_version: int | None = None
    new_version: int | None = None


class SnapshotIntegrityDetail(BaseModel):
    """Per-snapshot outcome inside a verification summary.

    ``status`` is one of ``verified``, ``tampered`` or ``error``.
    """

    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    status: str
    subject_id: str | None = None
    tampered_disclosures: list[str] = Field(default_factory=list)
    error: str | None = None


class SubjectVerificationSummary(BaseModel):
    """Bulk verification outcome for every snapshot of one subject."""

    model_config = ConfigDict(frozen=True)

    subject_type: str
    subject_id: str
    total_snapshots: int
    verified: int
    tampered: int
    errors: int = 0
    details: list[SnapshotIntegrityDetail] = Field(default_factory=list)

    @property
    def all_verified(self) -> bool:
        return self.tampered == 0 and self.errors == 0 and self.verified == self.total_snapshots


class CompanyVerificationSummary(BaseModel):
    """Verification outcome across every investment snapshot of one company."""

    model_config = ConfigDict(frozen=True)

    company_id: str
    subjects_checked: int
    total_snapshots: int
    verified: int
    tampered: int
    errors: int
    details: list[SnapshotIntegrityDetail] = Field(default_factory=list)

    @classmethod
    def combine(cls, company_id: str, summaries: list[SubjectVerificationSummary]) -> CompanyVerificationSummary:
        return cls(
            company_id=company_id,
            subjects_checked=len(summaries),
            total_snapshots=sum(summary.total_snapshots for summary in summaries),
            verified=sum(summary.verified for summary in summaries),
            tampered=sum(summary.tampered for summary in summaries),
            errors=sum(summary.errors for summary in summaries),
            details=[detail for summary in summaries for detail in summary.details],
        )

    @property
    def all_verified(self) -> bool:
        return self.tampered == 0 and self.errors == 0 and self.verified == self.total_snapshots


class SnapshotExport(BaseModel):
    """Immutable export document handed to download/print collaborators."""

    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    subject_type: str
    subject_id: str
    trigger: str
    captured_at: datetime
    supersedes_id: str | None
    hash_algorithm: str = "sha256"
    content_hash: str
    content: dict[str, Any]
    exported_at: datetime
