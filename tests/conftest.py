"""Test fixtures for compliance-audit-core.

Provides:
- metrics: AuditMetrics bound to a private CollectorRegistry
- database: a fresh InMemoryDatabase per test
- machine / trail / audit_logger / snapshot_engine / entity_service / actions:
  engine components wired onto the in-memory database
- system_actor / admin_actor / plain_user: actor contexts
- purchase_context: a complete SnapshotContext factory
- disclosure_factory: locked DisclosureRef factory
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest
from prometheus_client import CollectorRegistry

from compliance_audit_core.adapters.memory import InMemoryDatabase
from compliance_audit_core.audit_trail.events import ActorContext
from compliance_audit_core.audit_trail.logger import AuditLogger
from compliance_audit_core.audit_trail.trail import AuditTrail
from compliance_audit_core.core.services import ComplianceActions, EntityService
from compliance_audit_core.domain.definitions import build_registry
from compliance_audit_core.observability import AuditMetrics
from compliance_audit_core.snapshots.canonical import content_hash
from compliance_audit_core.snapshots.engine import SnapshotEngine
from compliance_audit_core.snapshots.models import Acknowledgement, DisclosureRef, RiskFlag, SnapshotContext
from compliance_audit_core.state_machine.engine import StateMachine


@pytest.fixture()
def metrics() -> AuditMetrics:
    """Return metrics bound to a throwaway registry so counts start at zero."""
    return AuditMetrics(CollectorRegistry())


@pytest.fixture()
def database() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture()
def machine(database: InMemoryDatabase, metrics: AuditMetrics) -> StateMachine:
    return StateMachine(
        build_registry(),
        database.unit_of_work,
        store_timeout_seconds=2.0,
        max_retries=3,
        metrics=metrics,
    )


@pytest.fixture()
def trail(database: InMemoryDatabase) -> AuditTrail:
    return AuditTrail(database.unit_of_work, default_page_size=50, store_timeout_seconds=2.0)


@pytest.fixture()
def audit_logger(trail: AuditTrail, metrics: AuditMetrics) -> AuditLogger:
    return AuditLogger(trail, metrics=metrics)


@pytest.fixture()
def snapshot_engine(database: InMemoryDatabase, metrics: AuditMetrics) -> SnapshotEngine:
    return SnapshotEngine(database.unit_of_work, store_timeout_seconds=2.0, metrics=metrics)


@pytest.fixture()
def entity_service(machine: StateMachine, database: InMemoryDatabase, audit_logger: AuditLogger) -> EntityService:
    return EntityService(machine, database.unit_of_work, audit_logger, store_timeout_seconds=2.0)


@pytest.fixture()
def actions(
    machine: StateMachine,
    entity_service: EntityService,
    snapshot_engine: SnapshotEngine,
) -> ComplianceActions:
    return ComplianceActions(machine, entity_service, snapshot_engine)


@pytest.fixture()
def system_actor() -> ActorContext:
    return ActorContext.system()


@pytest.fixture()
def admin_actor() -> ActorContext:
    return ActorContext.user("admin-7", actor_type="User", roles={"admin"})


@pytest.fixture()
def plain_user() -> ActorContext:
    return ActorContext.user("user-42", actor_type="User")


def make_disclosure(
    disclosure_id: str = "disc-1",
    module_code: str = "financials",
    version_id: str = "ver-1",
    version_number: int = 1,
    data: dict[str, Any] | None = None,
) -> DisclosureRef:
    """Build a locked disclosure version whose hash matches its data."""
    payload = data if data is not None else {"revenue": "1200000.00", "fiscal_year": 2025}
    return DisclosureRef(
        disclosure_id=disclosure_id,
        module_code=module_code,
        version_id=version_id,
        version_number=version_number,
        version_hash=content_hash(payload),
        approved_at=datetime(2026, 1, 15, 10, 30, tzinfo=UTC),
        data=payload,
    )


@pytest.fixture()
def purchase_context() -> Callable[..., SnapshotContext]:
    """Return a factory for complete purchase contexts."""

    def factory(total_amount: Any = 5000, disclosures: list[DisclosureRef] | None = None) -> SnapshotContext:
        return SnapshotContext(
            company_state={"company_id": "co-1", "disclosure_tier": "tier_2_live", "publicly_visible": True},
            disclosures_shown=disclosures if disclosures is not None else [make_disclosure()],
            risk_flags=[
                RiskFlag(
                    flag_type="concentration",
                    severity="medium",
                    category="financial",
                    description="Single customer exceeds 40% of revenue",
                    detected_at=datetime(2026, 2, 1, tzinfo=UTC),
                )
            ],
            acknowledgements=[
                Acknowledgement(
                    acknowledgement_type="illiquidity",
                    granted_at=datetime(2026, 3, 1, 9, 0, tzinfo=UTC),
                    version="v2",
                )
            ],
            financial_terms={"total_amount": total_amount, "currency": "INR"},
        )

    return factory


@pytest.fixture()
def disclosure_factory() -> Callable[..., DisclosureRef]:
    """Return make_disclosure() for tests that need custom disclosures."""
    return make_disclosure
