"""Snapshot engine: capture, verify, correct, export and compare.

Capture validates the supplied context, freezes it into a Snapshot whose
content hash covers every other field, and writes it through the caller's
unit of work so it commits or rolls back with its triggering transition.

Verification always rehydrates the stored record and recomputes the hash.
A mismatch, or a stored record that no longer rehydrates, is an integrity
incident: it is logged at critical level, counted, and raised as
TamperDetectedError, never reported as "not found".
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from compliance_audit_core.errors import (
    IncompleteSnapshotError,
    PersistenceError,
    SnapshotNotFoundError,
    TamperDetectedError,
)
from compliance_audit_core.observability import AuditMetrics, get_logger
from compliance_audit_core.observability import metrics as default_metrics
from compliance_audit_core.snapshots.canonical import content_hash, hashes_match, normalize
from compliance_audit_core.snapshots.models import (
    DisclosureRef,
    Snapshot,
    SnapshotContext,
    SnapshotDifference,
    SnapshotExport,
    SnapshotIntegrityDetail,
    SnapshotVerification,
    SubjectVerificationSummary,
)
from compliance_audit_core.timeouts import DEFAULT_STORE_TIMEOUT_SECONDS, bounded

if TYPE_CHECKING:
    from compliance_audit_core.core.interfaces import IUnitOfWork, UnitOfWorkFactory

logger = get_logger(__name__)

CORRECTION_TRIGGER = "correction"


def missing_context(context: SnapshotContext) -> list[str]:
    """Return a description of every missing or inconsistent context part."""
    missing: list[str] = []
    if not context.company_state:
        missing.append("company_state")
    if not context.financial_terms:
        missing.append("financial_terms")
    for disclosure in context.disclosures_shown:
        if not disclosure.version_id:
            missing.append(f"disclosure {disclosure.disclosure_id} version_id")
        if not disclosure.version_hash:
            missing.append(f"disclosure {disclosure.disclosure_id} version_hash")
        elif disclosure.data is not None and not hashes_match(
            disclosure.version_hash, content_hash(disclosure.data)
        ):
            missing.append(f"disclosure {disclosure.disclosure_id} data matching version_hash")
    return missing


def tampered_disclosures(snapshot: Snapshot) -> list[str]:
    """Return ids of embedded disclosures whose data no longer matches its hash."""
    return [
        disclosure.disclosure_id
        for disclosure in snapshot.disclosures_shown
        if disclosure.data is not None
        and not hashes_match(disclosure.version_hash or "", content_hash(disclosure.data))
    ]


def seal(snapshot: Snapshot) -> Snapshot:
    """Return a copy of the snapshot carrying its computed content hash."""
    return snapshot.model_copy(update={"content_hash": content_hash(snapshot.hashable_content())})


class SnapshotEngine:
    """Creates and verifies tamper-evident snapshots.

    Args:
        uow_factory: Unit-of-work factory used when no caller transaction
            is supplied, and for every read.
        store_timeout_seconds: Upper bound for one store interaction.
        metrics: Metrics holder; defaults to the process-wide instance.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        store_timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS,
        metrics: AuditMetrics | None = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._timeout = store_timeout_seconds
        self._metrics = metrics or default_metrics

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def capture(
        self,
        subject_type: str,
        subject_id: str,
        context: SnapshotContext,
        trigger: str,
        uow: IUnitOfWork | None = None,
        supersedes_id: str | None = None,
    ) -> Snapshot:
        """Freeze a subject's context into a hashed, write-once snapshot.

        Args:
            subject_type: Entity type of the subject (``investment``).
            subject_id: Identifier of the subject.
            context: Everything to embed.
            trigger: Business event that caused the capture.
            uow: Caller's unit of work. When given, the snapshot is staged in
                it and commits with the caller; otherwise it is committed here.
            supersedes_id: For corrections, the snapshot being superseded.

        Returns:
            The persisted snapshot including its content hash.

        Raises:
            IncompleteSnapshotError: If the context is incomplete; nothing is
                written.
            PersistenceError: If the store fails or times out.
        """
        missing = missing_context(context)
        if missing:
            logger.error(
                "Snapshot capture aborted: incomplete context",
                subject_type=subject_type,
                subject_id=str(subject_id),
                trigger=trigger,
                missing=missing,
            )
            raise IncompleteSnapshotError(subject_id=str(subject_id), missing=missing)

        disclosures = [
            disclosure.model_copy(update={"data": normalize(disclosure.data)})
            if disclosure.data is not None
            else disclosure
            for disclosure in context.disclosures_shown
        ]
        snapshot = seal(
            Snapshot(
                subject_type=subject_type,
                subject_id=str(subject_id),
                trigger=trigger,
                company_state=normalize(context.company_state),
                disclosures_shown=disclosures,
                risk_flags=list(context.risk_flags),
                acknowledgements=list(context.acknowledgements),
                financial_terms=normalize(context.financial_terms),
                supersedes_id=supersedes_id,
                content_hash="",
            )
        )

        if uow is not None:
            await uow.snapshots.write(snapshot)
        else:
            await bounded(self._write_own(snapshot), self._timeout, "Snapshot store", snapshot_id=snapshot.id)

        logger.info(
            "Snapshot captured",
            snapshot_id=snapshot.id,
            subject_type=subject_type,
            subject_id=str(subject_id),
            trigger=trigger,
            disclosures_count=len(snapshot.disclosures_shown),
            content_hash=snapshot.content_hash,
            supersedes_id=supersedes_id,
        )
        return snapshot

    async def capture_correction(
        self,
        original_id: str,
        context: SnapshotContext,
        reason: str,
        uow: IUnitOfWork | None = None,
    ) -> Snapshot:
        """Write a new snapshot superseding an existing one.

        The original is never modified; the correction points back at it via
        ``supersedes_id``.

        Raises:
            SnapshotNotFoundError: If the original does not exist.
            IncompleteSnapshotError: If the corrected context is incomplete.
        """
        original = await self._load(original_id)
        correction = await self.capture(
            subject_type=original.subject_type,
            subject_id=original.subject_id,
            context=context,
            trigger=CORRECTION_TRIGGER,
            uow=uow,
            supersedes_id=original.id,
        )
        logger.warning(
            "Snapshot correction captured",
            snapshot_id=correction.id,
            supersedes_id=original.id,
            reason=reason,
        )
        return correction

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify(self, snapshot_id: str) -> SnapshotVerification:
        """Recompute the stored snapshot's hash and compare.

        Idempotent: with unchanged stored content the result never changes.

        Raises:
            SnapshotNotFoundError: If no snapshot exists with the id.
            TamperDetectedError: If the stored content no longer matches its
                hash, or an embedded disclosure no longer matches its version
                hash.
        """
        snapshot = await self._load(snapshot_id)
        return self._verify_loaded(snapshot)

    def _verify_loaded(self, snapshot: Snapshot) -> SnapshotVerification:
        computed = content_hash(snapshot.hashable_content())
        tampered = tampered_disclosures(snapshot)
        if not hashes_match(snapshot.content_hash, computed) or tampered:
            error = TamperDetectedError(
                snapshot_id=snapshot.id,
                stored_hash=snapshot.content_hash,
                computed_hash=computed,
                tampered_disclosures=tampered,
            )
            self._report_tamper(error, subject_type=snapshot.subject_type, subject_id=snapshot.subject_id)
            raise error
        return SnapshotVerification(
            snapshot_id=snapshot.id,
            verified=True,
            content_hash=computed,
            disclosures_verified=sum(1 for d in snapshot.disclosures_shown if d.data is not None),
            verified_at=datetime.now(UTC),
        )

    def _report_tamper(self, error: TamperDetectedError, **context: Any) -> None:
        self._metrics.snapshot_tamper_detections.inc()
        logger.critical(
            "SNAPSHOT TAMPER DETECTED",
            snapshot_id=error.snapshot_id,
            stored_hash=error.stored_hash,
            computed_hash=error.computed_hash,
            tampered_disclosures=error.tampered_disclosures,
            reason=error.reason,
            **context,
        )

    async def verify_all_for_subject(self, subject_type: str, subject_id: str) -> SubjectVerificationSummary:
        """Verify every snapshot of a subject and summarise the outcome.

        Each snapshot is loaded and verified on its own. Tampered snapshots,
        including records that no longer rehydrate, land in the ``tampered``
        bucket; snapshots that could not be read land in ``errors``. Neither
        stops the remaining snapshots from being checked.
        """
        async with self._uow_factory() as uow:
            snapshot_ids = await bounded(
                uow.snapshots.ids_for_subject(subject_type, str(subject_id)),
                self._timeout,
                "Snapshot store",
                subject_id=str(subject_id),
            )

        verified = tampered = errors = 0
        details: list[SnapshotIntegrityDetail] = []
        for snapshot_id in snapshot_ids:
            try:
                self._verify_loaded(await self._load(snapshot_id))
            except TamperDetectedError as exc:
                tampered += 1
                details.append(
                    SnapshotIntegrityDetail(
                        snapshot_id=snapshot_id,
                        subject_id=str(subject_id),
                        status="tampered",
                        tampered_disclosures=exc.tampered_disclosures,
                        error=exc.message,
                    )
                )
            except (SnapshotNotFoundError, PersistenceError) as exc:
                errors += 1
                logger.error("Snapshot verification failed", snapshot_id=snapshot_id, error=exc.message)
                details.append(
                    SnapshotIntegrityDetail(
                        snapshot_id=snapshot_id, subject_id=str(subject_id), status="error", error=exc.message
                    )
                )
            else:
                verified += 1
                details.append(
                    SnapshotIntegrityDetail(snapshot_id=snapshot_id, subject_id=str(subject_id), status="verified")
                )

        return SubjectVerificationSummary(
            subject_type=subject_type,
            subject_id=str(subject_id),
            total_snapshots=len(snapshot_ids),
            verified=verified,
            tampered=tampered,
            errors=errors,
            details=details,
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def get(self, snapshot_id: str) -> Snapshot:
        """Return a stored snapshot without verifying it.

        Raises:
            SnapshotNotFoundError: If no snapshot exists with the id.
        """
        return await self._load(snapshot_id)

    async def history_for_subject(self, subject_type: str, subject_id: str) -> list[Snapshot]:
        """Return every snapshot of a subject, oldest first.

        Raises:
            TamperDetectedError: If a stored record no longer rehydrates.
        """
        async with self._uow_factory() as uow:
            try:
                return await bounded(
                    uow.snapshots.list_for_subject(subject_type, str(subject_id)),
                    self._timeout,
                    "Snapshot store",
                    subject_id=str(subject_id),
                )
            except TamperDetectedError as exc:
                self._report_tamper(exc, subject_type=subject_type, subject_id=str(subject_id))
                raise

    async def export(self, snapshot_id: str) -> SnapshotExport:
        """Return the snapshot as a single immutable document with its hash.

        The snapshot is verified first; a tampered record is never exported.

        Raises:
            SnapshotNotFoundError: If no snapshot exists with the id.
            TamperDetectedError: If verification fails.
        """
        snapshot = await self._load(snapshot_id)
        self._verify_loaded(snapshot)
        return SnapshotExport(
            snapshot_id=snapshot.id,
            subject_type=snapshot.subject_type,
            subject_id=snapshot.subject_id,
            trigger=snapshot.trigger,
            captured_at=snapshot.captured_at,
            supersedes_id=snapshot.supersedes_id,
            content_hash=snapshot.content_hash,
            content=normalize(snapshot.hashable_content()),
            exported_at=datetime.now(UTC),
        )

    async def compare(self, first_id: str, second_id: str) -> list[SnapshotDifference]:
        """List the disclosure differences between two snapshots.

        Raises:
            SnapshotNotFoundError: If either snapshot does not exist.
        """
        first = await self._load(first_id)
        second = await self._load(second_id)
        before: dict[str, DisclosureRef] = {d.disclosure_id: d for d in first.disclosures_shown}
        after: dict[str, DisclosureRef] = {d.disclosure_id: d for d in second.disclosures_shown}

        differences: list[SnapshotDifference] = []
        for disclosure_id, old in before.items():
            new = after.get(disclosure_id)
            if new is None:
                differences.append(
                    SnapshotDifference(
                        disclosure_id=disclosure_id,
                        change_type="removed",
                        module_code=old.module_code,
                        old_version=old.version_number,
                    )
                )
            elif old.version_id != new.version_id:
                differences.append(
                    SnapshotDifference(
                        disclosure_id=disclosure_id,
                        change_type="version_changed",
                        module_code=new.module_code,
                        old_version=old.version_number,
                        new_version=new.version_number,
                    )
                )
        for disclosure_id, new in after.items():
            if disclosure_id not in before:
                differences.append(
                    SnapshotDifference(
                        disclosure_id=disclosure_id,
                        change_type="added",
                        module_code=new.module_code,
                        new_version=new.version_number,
                    )
                )
        return differences

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load(self, snapshot_id: str) -> Snapshot:
        async with self._uow_factory() as uow:
            try:
                snapshot = await bounded(
                    uow.snapshots.get(snapshot_id), self._timeout, "Snapshot store", snapshot_id=snapshot_id
                )
            except TamperDetectedError as exc:
                self._report_tamper(exc)
                raise
        if snapshot is None:
            raise SnapshotNotFoundError(snapshot_id)
        return snapshot

    async def _write_own(self, snapshot: Snapshot) -> None:
        async with self._uow_factory() as uow:
            await uow.snapshots.write(snapshot)
            await uow.commit()

