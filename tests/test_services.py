"""Tests for EntityService and ComplianceActions.

Runs the full in-memory stack: state machine, audit trail, snapshot engine
and monetary reconciliation wired through the conftest fixtures.
"""

import asyncio
from collections.abc import Callable
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from compliance_audit_core.adapters.memory import InMemoryDatabase, InMemoryUnitOfWork
from compliance_audit_core.audit_trail import ActorContext, AuditLogger, AuditTrail
from compliance_audit_core.core.services import (
    ComplianceActions,
    EntityService,
    company_state,
    financial_terms,
)
from compliance_audit_core.domain.entities import Company, Disclosure, Investment, Product
from compliance_audit_core.errors import (
    IncompleteSnapshotError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    TamperDetectedError,
    TransitionVetoedError,
)
from compliance_audit_core.observability import AuditMetrics
from compliance_audit_core.snapshots import (
    DisclosureRef,
    RiskFlag,
    SnapshotContext,
    SnapshotContextAssembler,
    SnapshotEngine,
)
from compliance_audit_core.state_machine import StateMachine

ContextFactory = Callable[..., SnapshotContext]


async def actions_for(trail: AuditTrail, entity_type: str, entity_id: str) -> list[str]:
    page = await trail.history(entity_type, entity_id, page_size=100)
    return [event.action for event in reversed(page.items)]


async def processing_investment(entity_service: EntityService, actions: ComplianceActions) -> Investment:
    investment = await entity_service.create(
        Investment(company_id="co-1", investor_id="investor-3", amount=Decimal("5000"), fee=150.005)
    )
    await actions.perform_transition("investment", investment.id, "start_processing")
    return investment


async def approved_disclosure(
    entity_service: EntityService, actions: ComplianceActions, company_id: str
) -> Disclosure:
    disclosure = await entity_service.create(Disclosure(company_id=company_id, module_code="financials"))
    for transition in ("submit", "start_review", "approve"):
        await actions.perform_transition("disclosure", disclosure.id, transition)
    return disclosure


class HangingUnitOfWork(InMemoryUnitOfWork):
    async def __aenter__(self) -> InMemoryUnitOfWork:
        await asyncio.sleep(1.0)
        return self


class StaticDisclosures:
    def __init__(self, disclosures: list[DisclosureRef]) -> None:
        self._disclosures = disclosures

    async def approved_disclosures(self, company_id: str) -> list[DisclosureRef]:
        return self._disclosures


class StaticRiskFlags:
    async def active_flags(self, company_id: str) -> list[RiskFlag]:
        return [RiskFlag(flag_type="early_stage", severity="low")]


# ---------------------------------------------------------------------------
# EntityService
# ---------------------------------------------------------------------------


class TestEntityService:
    """Tests for create / get / save."""

    @pytest.mark.asyncio()
    async def test_create_reconciles_money_and_audits(
        self,
        entity_service: EntityService,
        database: InMemoryDatabase,
        trail: AuditTrail,
        admin_actor: ActorContext,
    ) -> None:
        investment = await entity_service.create(
            Investment(company_id="co-1", investor_id="investor-3", amount=Decimal("5000"), fee=150.005),
            actor=admin_actor,
        )

        assert investment.version == 1
        assert investment.status == "pending"
        assert investment.fee_paise == 15001
        assert investment.fee == Decimal("150.01")
        row = database.entities.read("investment", investment.id)
        assert (row["amount_paise"], row["fee_paise"]) == (500000, 15001)

        page = await trail.history("investment", investment.id)
        assert [event.action for event in page.items] == ["investment.created"]
        assert page.items[0].new_values["fee"] == "150.01"
        assert page.items[0].actor_id == "admin-7"

    @pytest.mark.asyncio()
    async def test_create_fills_missing_initial_state(self, entity_service: EntityService) -> None:
        company = await entity_service.create(Company(name="Acme", disclosure_tier=None))
        assert company.disclosure_tier == "tier_0_pending"

    @pytest.mark.asyncio()
    async def test_create_in_non_initial_state_rejected(
        self,
        entity_service: EntityService,
        database: InMemoryDatabase,
    ) -> None:
        product = Product(company_id="co-1", name="Series A", status="approved")

        with pytest.raises(InvalidTransitionError):
            await entity_service.create(product)

        assert database.entities.read("product", product.id) is None

    @pytest.mark.asyncio()
    async def test_get_rehydrates_entity(self, entity_service: EntityService) -> None:
        created = await entity_service.create(Product(company_id="co-1", name="Series A"))

        loaded = await entity_service.get("product", created.id)

        assert isinstance(loaded, Product)
        assert (loaded.name, loaded.status, loaded.version) == ("Series A", "draft", 1)

    @pytest.mark.asyncio()
    async def test_get_missing_raises(self, entity_service: EntityService) -> None:
        with pytest.raises(NotFoundError):
            await entity_service.get("product", "nope")

    @pytest.mark.asyncio()
    async def test_save_records_changed_fields_only(
        self,
        entity_service: EntityService,
        trail: AuditTrail,
    ) -> None:
        """Minor units win on save and only the changed money fields are audited."""
        investment = await entity_service.create(
            Investment(company_id="co-1", investor_id="investor-3", amount=Decimal("5000"), fee=150.005)
        )
        investment.fee_paise = 20000

        await entity_service.save(investment)

        assert investment.fee == Decimal("200.00")
        assert investment.version == 2
        page = await trail.history("investment", investment.id)
        update = page.items[0]
        assert update.action == "investment.updated"
        assert update.old_values == {"fee": "150.01", "fee_paise": 15001}
        assert update.new_values == {"fee": "200.00", "fee_paise": 20000}

    @pytest.mark.asyncio()
    async def test_save_cannot_change_state(
        self,
        entity_service: EntityService,
        database: InMemoryDatabase,
    ) -> None:
        product = await entity_service.create(Product(company_id="co-1", name="Series A"))
        product.status = "approved"

        with pytest.raises(InvalidTransitionError, match="declared transition"):
            await entity_service.save(product)

        assert database.entities.read("product", product.id)["status"] == "draft"

    @pytest.mark.asyncio()
    async def test_save_unknown_entity(self, entity_service: EntityService) -> None:
        with pytest.raises(NotFoundError):
            await entity_service.save(Product(company_id="co-1", name="Ghost"))

    @pytest.mark.asyncio()
    async def test_audit_failure_does_not_fail_create(
        self,
        machine: StateMachine,
        database: InMemoryDatabase,
        metrics: AuditMetrics,
    ) -> None:
        failing_trail = AsyncMock(spec=AuditTrail)
        failing_trail.append.side_effect = PersistenceError("audit store unavailable")
        service = EntityService(machine, database.unit_of_work, AuditLogger(failing_trail, metrics=metrics))

        company = await service.create(Company(name="Acme"))

        assert database.entities.read("company", company.id)["name"] == "Acme"
        assert metrics.registry.get_sample_value(
            "audit_append_failures_total", {"entity_type": "company", "action": "company.created"}
        ) == 1.0

    @pytest.mark.asyncio()
    async def test_store_timeout_raises_persistence_error(
        self,
        machine: StateMachine,
        database: InMemoryDatabase,
        audit_logger: AuditLogger,
    ) -> None:
        service = EntityService(
            machine, lambda: HangingUnitOfWork(database), audit_logger, store_timeout_seconds=0.05
        )

        with pytest.raises(PersistenceError, match="did not respond"):
            await service.create(Company(name="Acme", id="co-1"))
        with pytest.raises(PersistenceError, match="did not respond"):
            await service.get("company", "co-1")
        with pytest.raises(PersistenceError, match="did not respond"):
            await service.find("company")

        assert database.entities.read("company", "co-1") is None

    @pytest.mark.asyncio()
    async def test_find_matches_every_criterion(self, entity_service: EntityService) -> None:
        first = await entity_service.create(Investment(company_id="co-1", investor_id="investor-3"))
        await entity_service.create(Investment(company_id="co-1", investor_id="investor-4"))
        await entity_service.create(Investment(company_id="co-2", investor_id="investor-3"))

        found = await entity_service.find("investment", company_id="co-1", investor_id="investor-3")

        assert [investment.id for investment in found] == [first.id]
        assert isinstance(found[0], Investment)


# ---------------------------------------------------------------------------
# EntityService: public visibility queries
# ---------------------------------------------------------------------------


class TestPublicQueries:
    """Tests for public_companies() and both public_products() paths."""

    @pytest.fixture()
    def seeded(self, database: InMemoryDatabase) -> InMemoryDatabase:
        for company_id, tier in (
            ("co-live", "tier_2_live"),
            ("co-featured", "tier_3_featured"),
            ("co-upcoming", "tier_1_upcoming"),
            ("co-untiered", None),
        ):
            database.entities.write("company", company_id, {"name": company_id, "disclosure_tier": tier}, 1)
        for product_id, company_id, status in (
            ("pr-live", "co-live", "approved"),
            ("pr-featured", "co-featured", "approved"),
            ("pr-live-draft", "co-live", "draft"),
            ("pr-upcoming", "co-upcoming", "approved"),
            ("pr-untiered", "co-untiered", "approved"),
            ("pr-orphan", "co-gone", "approved"),
        ):
            database.entities.write(
                "product", product_id, {"company_id": company_id, "name": product_id, "status": status}, 1
            )
        return database

    @pytest.mark.asyncio()
    async def test_public_companies(self, seeded: InMemoryDatabase, entity_service: EntityService) -> None:
        companies = await entity_service.public_companies()

        assert [company.id for company in companies] == ["co-featured", "co-live"]
        assert all(isinstance(company, Company) for company in companies)

    @pytest.mark.asyncio()
    async def test_product_paths_agree(self, seeded: InMemoryDatabase, entity_service: EntityService) -> None:
        direct = await entity_service.public_products()
        via_company = await entity_service.public_products(via_company=True)

        assert [product.id for product in direct] == ["pr-featured", "pr-live"]
        assert direct == via_company
        assert all(isinstance(product, Product) for product in direct)

    @pytest.mark.asyncio()
    async def test_company_going_live_exposes_its_products_on_both_paths(
        self,
        seeded: InMemoryDatabase,
        entity_service: EntityService,
    ) -> None:
        seeded.entities.write("company", "co-upcoming", {"disclosure_tier": "tier_2_live"}, 2)

        direct = {product.id for product in await entity_service.public_products()}
        via_company = {product.id for product in await entity_service.public_products(via_company=True)}

        assert direct == via_company == {"pr-featured", "pr-live", "pr-upcoming"}


# ---------------------------------------------------------------------------
# ComplianceActions: investments
# ---------------------------------------------------------------------------


class TestCompleteInvestment:
    """Tests for complete_investment()."""

    @pytest.mark.asyncio()
    async def test_completion_commits_transition_event_and_snapshot(
        self,
        entity_service: EntityService,
        actions: ComplianceActions,
        snapshot_engine: SnapshotEngine,
        trail: AuditTrail,
        database: InMemoryDatabase,
        plain_user: ActorContext,
        purchase_context: ContextFactory,
    ) -> None:
        investment = await processing_investment(entity_service, actions)

        result = await actions.complete_investment(investment.id, actor=plain_user, context=purchase_context())

        snapshot = result.side_effect_result
        assert result.to_state == "completed"
        assert snapshot.subject_id == investment.id
        assert snapshot.trigger == "investment_purchase"
        assert (await snapshot_engine.verify(snapshot.id)).verified is True
        assert database.entities.read("investment", investment.id)["status"] == "completed"
        assert await actions_for(trail, "investment", investment.id) == [
            "investment.created",
            "investment.start_processing",
            "investment.complete",
        ]

    @pytest.mark.asyncio()
    async def test_incomplete_context_rolls_back_completion(
        self,
        entity_service: EntityService,
        actions: ComplianceActions,
        trail: AuditTrail,
        database: InMemoryDatabase,
        purchase_context: ContextFactory,
    ) -> None:
        """No snapshot means no completion: status, events and snapshots are untouched."""
        investment = await processing_investment(entity_service, actions)
        unlocked = DisclosureRef(disclosure_id="disc-2", module_code="financials")

        with pytest.raises(IncompleteSnapshotError):
            await actions.complete_investment(investment.id, context=purchase_context(disclosures=[unlocked]))

        assert database.entities.read("investment", investment.id)["status"] == "processing"
        assert database.snapshots.count() == 0
        assert "investment.complete" not in await actions_for(trail, "investment", investment.id)

    @pytest.mark.asyncio()
    async def test_pending_investment_cannot_complete(
        self,
        entity_service: EntityService,
        actions: ComplianceActions,
        database: InMemoryDatabase,
        purchase_context: ContextFactory,
    ) -> None:
        investment = await entity_service.create(Investment(company_id="co-1", investor_id="investor-3"))

        with pytest.raises(InvalidTransitionError):
            await actions.complete_investment(investment.id, context=purchase_context())

        assert database.snapshots.count() == 0

    @pytest.mark.asyncio()
    async def test_completion_with_assembled_context(
        self,
        machine: StateMachine,
        entity_service: EntityService,
        actions: ComplianceActions,
        snapshot_engine: SnapshotEngine,
        disclosure_factory: Callable[..., DisclosureRef],
    ) -> None:
        await entity_service.create(Company(name="Acme", id="co-1"))
        investment = await processing_investment(entity_service, actions)
        assembling = ComplianceActions(
            machine,
            entity_service,
            snapshot_engine,
            assembler=SnapshotContextAssembler(StaticDisclosures([disclosure_factory()]), StaticRiskFlags()),
        )

        result = await assembling.complete_investment(investment.id)

        snapshot = result.side_effect_result
        assert snapshot.company_state["company_id"] == "co-1"
        assert snapshot.company_state["publicly_visible"] is False
        assert snapshot.financial_terms["total_paise"] == 515001
        assert snapshot.financial_terms["total_amount"] == "5150.01"
        assert snapshot.risk_flags[0].flag_type == "early_stage"

    @pytest.mark.asyncio()
    async def test_completion_without_context_or_assembler(
        self,
        entity_service: EntityService,
        actions: ComplianceActions,
    ) -> None:
        investment = await processing_investment(entity_service, actions)

        with pytest.raises(ValueError, match="SnapshotContextAssembler"):
            await actions.complete_investment(investment.id)


# ---------------------------------------------------------------------------
# ComplianceActions: company promotion
# ---------------------------------------------------------------------------


class TestPromoteCompany:
    """Tests for promote_company() and its authorization hook."""

    @pytest.mark.asyncio()
    async def test_system_may_promote_to_upcoming_only(
        self,
        entity_service: EntityService,
        actions: ComplianceActions,
        system_actor: ActorContext,
        database: InMemoryDatabase,
    ) -> None:
        company = await entity_service.create(Company(name="Acme"))

        result = await actions.promote_company(company.id, "tier_1_upcoming", system_actor, "KYC complete")
        assert result.to_state == "tier_1_upcoming"
        assert result.event.metadata["justification"] == "KYC complete"

        with pytest.raises(TransitionVetoedError):
            await actions.promote_company(company.id, "tier_2_live", system_actor, "auto")
        assert database.entities.read("company", company.id)["disclosure_tier"] == "tier_1_upcoming"

    @pytest.mark.asyncio()
    async def test_admin_promotes_step_by_step(
        self,
        entity_service: EntityService,
        actions: ComplianceActions,
        admin_actor: ActorContext,
        trail: AuditTrail,
    ) -> None:
        company = await entity_service.create(Company(name="Acme"))
        await approved_disclosure(entity_service, actions, company.id)

        for tier in ("tier_1_upcoming", "tier_2_live", "tier_3_featured"):
            await actions.promote_company(company.id, tier, admin_actor, f"Reviewed for {tier}")

        assert await actions_for(trail, "company", company.id) == [
            "company.created",
            "company.promote_to_upcoming",
            "company.go_live",
            "company.feature",
        ]

    @pytest.mark.asyncio()
    async def test_non_admin_user_is_vetoed(
        self,
        entity_service: EntityService,
        actions: ComplianceActions,
        plain_user: ActorContext,
    ) -> None:
        company = await entity_service.create(Company(name="Acme"))

        with pytest.raises(TransitionVetoedError, match="not authorized"):
            await actions.promote_company(company.id, "tier_1_upcoming", plain_user, "please")

    @pytest.mark.asyncio()
    async def test_tier_skip_rejected(
        self,
        entity_service: EntityService,
        actions: ComplianceActions,
        admin_actor: ActorContext,
    ) -> None:
        company = await entity_service.create(Company(name="Acme"))

        with pytest.raises(InvalidTransitionError) as exc_info:
            await actions.promote_company(company.id, "tier_2_live", admin_actor, "fast track")

        assert (exc_info.value.from_state, exc_info.value.to_state) == ("tier_0_pending", "tier_2_live")

    @pytest.mark.asyncio()
    async def test_downgrade_and_unknown_tier_rejected(
        self,
        entity_service: EntityService,
        actions: ComplianceActions,
        admin_actor: ActorContext,
    ) -> None:
        company = await entity_service.create(Company(name="Acme"))
        await actions.promote_company(company.id, "tier_1_upcoming", admin_actor, "ready")

        with pytest.raises(InvalidTransitionError):
            await actions.promote_company(company.id, "tier_0_pending", admin_actor, "undo")
        with pytest.raises(InvalidTransitionError) as exc_info:
            await actions.promote_company(company.id, "tier_9_platinum", admin_actor, "vip")
        assert exc_info.value.to_state == "tier_9_platinum"

    @pytest.mark.asyncio()
    async def test_go_live_requires_approved_disclosure(
        self,
        entity_service: EntityService,
        actions: ComplianceActions,
        admin_actor: ActorContext,
        database: InMemoryDatabase,
    ) -> None:
        company = await entity_service.create(Company(name="Acme"))
        await actions.promote_company(company.id, "tier_1_upcoming", admin_actor, "ready")
        await entity_service.create(Disclosure(company_id=company.id, module_code="financials"))

        with pytest.raises(TransitionVetoedError, match="approved disclosure"):
            await actions.promote_company(company.id, "tier_2_live", admin_actor, "looks good")
        assert database.entities.read("company", company.id)["disclosure_tier"] == "tier_1_upcoming"

        await approved_disclosure(entity_service, actions, company.id)
        result = await actions.promote_company(company.id, "tier_2_live", admin_actor, "looks good")
        assert result.to_state == "tier_2_live"

    @pytest.mark.asyncio()
    async def test_featured_requires_live(
        self,
        entity_service: EntityService,
        actions: ComplianceActions,
        admin_actor: ActorContext,
    ) -> None:
        company = await entity_service.create(Company(name="Acme"))
        await approved_disclosure(entity_service, actions, company.id)
        await actions.promote_company(company.id, "tier_1_upcoming", admin_actor, "ready")

        with pytest.raises(InvalidTransitionError) as exc_info:
            await actions.promote_company(company.id, "tier_3_featured", admin_actor, "skip live")

        assert exc_info.value.from_state == "tier_1_upcoming"

    @pytest.mark.asyncio()
    async def test_promote_to_next_tier_until_maximum(
        self,
        entity_service: EntityService,
        actions: ComplianceActions,
        admin_actor: ActorContext,
    ) -> None:
        company = await entity_service.create(Company(name="Acme"))
        await approved_disclosure(entity_service, actions, company.id)

        reached = [
            (await actions.promote_to_next_tier(company.id, admin_actor, "next step")).to_state for _ in range(3)
        ]

        assert reached == ["tier_1_upcoming", "tier_2_live", "tier_3_featured"]
        with pytest.raises(InvalidTransitionError, match="maximum tier"):
            await actions.promote_to_next_tier(company.id, admin_actor, "beyond featured")


# ---------------------------------------------------------------------------
# ComplianceActions: investor-facing snapshot reads
# ---------------------------------------------------------------------------


class TestCompanySnapshots:
    """Tests for verify_company_snapshots() and investor_view_history()."""

    @pytest.mark.asyncio()
    async def test_verify_company_snapshots_aggregates_investments(
        self,
        entity_service: EntityService,
        actions: ComplianceActions,
        snapshot_engine: SnapshotEngine,
        database: InMemoryDatabase,
        purchase_context: ContextFactory,
    ) -> None:
        first = await entity_service.create(Investment(company_id="co-1", investor_id="investor-3"))
        second = await entity_service.create(Investment(company_id="co-1", investor_id="investor-4"))
        other = await entity_service.create(Investment(company_id="co-2", investor_id="investor-3"))
        intact = await snapshot_engine.capture("investment", first.id, purchase_context(), "investment_purchase")
        tampered = await snapshot_engine.capture("investment", second.id, purchase_context(), "investment_purchase")
        await snapshot_engine.capture("investment", other.id, purchase_context(), "investment_purchase")
        database.snapshots._records[tampered.id]["financial_terms"] = "5001"

        summary = await actions.verify_company_snapshots("co-1")

        assert summary.company_id == "co-1"
        assert summary.subjects_checked == 2
        assert (summary.total_snapshots, summary.verified, summary.tampered, summary.errors) == (2, 1, 1, 0)
        assert summary.all_verified is False
        details = {detail.snapshot_id: detail for detail in summary.details}
        assert details[intact.id].status == "verified"
        assert details[tampered.id].status == "tampered"
        assert details[tampered.id].subject_id == second.id

    @pytest.mark.asyncio()
    async def test_company_without_investments_verifies_clean(self, actions: ComplianceActions) -> None:
        summary = await actions.verify_company_snapshots("co-empty")
        assert (summary.subjects_checked, summary.total_snapshots) == (0, 0)
        assert summary.all_verified is True

    @pytest.mark.asyncio()
    async def test_investor_view_history_newest_first(
        self,
        entity_service: EntityService,
        actions: ComplianceActions,
        snapshot_engine: SnapshotEngine,
        purchase_context: ContextFactory,
    ) -> None:
        first = await entity_service.create(Investment(company_id="co-1", investor_id="investor-3"))
        second = await entity_service.create(Investment(company_id="co-1", investor_id="investor-3"))
        elsewhere = await entity_service.create(Investment(company_id="co-2", investor_id="investor-3"))
        someone_else = await entity_service.create(Investment(company_id="co-1", investor_id="investor-4"))
        expected = [
            await snapshot_engine.capture("investment", investment.id, purchase_context(), "investment_purchase")
            for investment in (first, second, first)
        ]
        for investment in (elsewhere, someone_else):
            await snapshot_engine.capture("investment", investment.id, purchase_context(), "investment_purchase")

        history = await actions.investor_view_history("investor-3", "co-1")

        assert {snapshot.id for snapshot in history} == {snapshot.id for snapshot in expected}
        assert [snapshot.captured_at for snapshot in history] == sorted(
            (snapshot.captured_at for snapshot in history), reverse=True
        )

    @pytest.mark.asyncio()
    async def test_investor_view_history_surfaces_tampering(
        self,
        entity_service: EntityService,
        actions: ComplianceActions,
        snapshot_engine: SnapshotEngine,
        database: InMemoryDatabase,
        purchase_context: ContextFactory,
    ) -> None:
        investment = await entity_service.create(Investment(company_id="co-1", investor_id="investor-3"))
        snapshot = await snapshot_engine.capture("investment", investment.id, purchase_context(), "investment_purchase")
        del database.snapshots._records[snapshot.id]["content_hash"]

        with pytest.raises(TamperDetectedError):
            await actions.investor_view_history("investor-3", "co-1")


class TestHelpers:
    """Tests for snapshot fact helpers."""

    def test_company_state(self) -> None:
        state = company_state(Company(name="Acme", disclosure_tier="tier_2_live", id="co-1"))
        assert state == {
            "company_id": "co-1",
            "name": "Acme",
            "disclosure_tier": "tier_2_live",
            "publicly_visible": True,
        }

    def test_financial_terms_from_minor_units(self) -> None:
        investment = Investment(
            company_id="co-1", investor_id="i-1", amount=Decimal("1.00"), amount_paise=250, id="inv-1"
        )
        terms = financial_terms(investment)
        assert terms["amount"] == Decimal("2.50")
        assert terms["fee"] == Decimal("0.00")
        assert terms["total_paise"] == 250
