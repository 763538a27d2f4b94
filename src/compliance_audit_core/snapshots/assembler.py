"""Snapshot context assembly from collaborator sources.

The assembler gathers what an investor was shown at purchase: only approved
disclosures backed by a locked version, and only risk flags that are active
and investor-visible. An approved disclosure without a locked version is a
hard failure; the capture must not proceed with a partial record.
"""

from __future__ import annotations

from typing import Any, Protocol

from compliance_audit_core.errors import IncompleteSnapshotError
from compliance_audit_core.observability import get_logger
from compliance_audit_core.snapshots.canonical import normalize
from compliance_audit_core.snapshots.models import (
    Acknowledgement,
    DisclosureRef,
    RiskFlag,
    SnapshotContext,
)

logger = get_logger(__name__)


class DisclosureSource(Protocol):
    """Supplies the approved, version-locked disclosures of a company."""

    async def approved_disclosures(self, company_id: str) -> list[DisclosureRef]:
        ...


class RiskFlagSource(Protocol):
    """Supplies the active, investor-visible risk flags of a company."""

    async def active_flags(self, company_id: str) -> list[RiskFlag]:
        ...


class SnapshotContextAssembler:
    """Builds a SnapshotContext for a purchase.

    Args:
        disclosures: Source of approved disclosure versions.
        risk_flags: Source of active risk flags.
    """

    def __init__(self, disclosures: DisclosureSource, risk_flags: RiskFlagSource) -> None:
        self._disclosures = disclosures
        self._risk_flags = risk_flags

    async def assemble(
        self,
        company_id: str,
        company_state: dict[str, Any],
        financial_terms: dict[str, Any],
        acknowledgements: list[Acknowledgement] | None = None,
    ) -> SnapshotContext:
        """Gather the full context for one capture.

        Raises:
            IncompleteSnapshotError: If an approved disclosure has no locked
                version.
        """
        disclosures = await self._disclosures.approved_disclosures(company_id)
        unlocked = [d.disclosure_id for d in disclosures if not d.version_id or not d.version_hash]
        if unlocked:
            logger.error(
                "Approved disclosure without a locked version",
                company_id=company_id,
                disclosure_ids=unlocked,
            )
            raise IncompleteSnapshotError(
                subject_id=company_id,
                missing=[f"locked version for disclosure {disclosure_id}" for disclosure_id in unlocked],
            )

        flags = await self._risk_flags.active_flags(company_id)
        logger.info(
            "Snapshot context assembled",
            company_id=company_id,
            approved_count=len(disclosures),
            version_map={d.disclosure_id: d.version_id for d in disclosures},
            risk_flag_count=len(flags),
        )
        return SnapshotContext(
            company_state=normalize(company_state),
            disclosures_shown=disclosures,
            risk_flags=flags,
            acknowledgements=list(acknowledgements or []),
            financial_terms=normalize(financial_terms),
        )
