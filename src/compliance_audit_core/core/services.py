"""Core business services for the compliance audit core.

Two service classes:
- EntityService: Versioned entity persistence with monetary reconciliation,
  best-effort field-change auditing and the public visibility queries
- ComplianceActions: Inbound business actions (perform_transition,
  complete_investment, promote_company, promote_to_next_tier) and the
  investor-facing snapshot reads, composed from the StateMachine and the
  SnapshotEngine

All services are async-first. They accept injected collaborators through
their constructors and contain no framework code. State fields are never
written directly: every state change goes through StateMachine.transition(),
which records its audit event in the same transaction.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from compliance_audit_core.audit_trail.events import ActorContext, AuditEvent
from compliance_audit_core.audit_trail.logger import AuditLogger
from compliance_audit_core.domain.definitions import INVESTMENT_MONEY, promotion_requirements
from compliance_audit_core.domain.entities import Company, Disclosure, Investment, Product, persisted_values
from compliance_audit_core.errors import InvalidTransitionError, NotFoundError
from compliance_audit_core.monetary.normalizer import get_amount, reconcile
from compliance_audit_core.observability import get_logger
from compliance_audit_core.snapshots.assembler import SnapshotContextAssembler
from compliance_audit_core.snapshots.engine import SnapshotEngine
from compliance_audit_core.snapshots.models import (
    Acknowledgement,
    CompanyVerificationSummary,
    Snapshot,
    SnapshotContext,
)
from compliance_audit_core.state_machine.config import EntityDefinition
from compliance_audit_core.state_machine.engine import StateMachine, TransitionResult
from compliance_audit_core.timeouts import DEFAULT_STORE_TIMEOUT_SECONDS, bounded
from compliance_audit_core.visibility.policy import company_is_public
from compliance_audit_core.visibility.tiers import next_tier, parse_tier

if TYPE_CHECKING:
    from compliance_audit_core.core.interfaces import IUnitOfWork, UnitOfWorkFactory

logger = get_logger(__name__)

INVESTMENT_PURCHASE_TRIGGER = "investment_purchase"
APPROVED_DISCLOSURE_STATUS = "approved"


class EntityService:
    """Create, load, save and query registered entities.

    Args:
        machine: StateMachine whose registry supplies entity definitions.
        uow_factory: Unit-of-work factory.
        audit_logger: Best-effort audit writer for plain saves.
        store_timeout_seconds: Upper bound for one store interaction.
    """

    def __init__(
        self,
        machine: StateMachine,
        uow_factory: UnitOfWorkFactory,
        audit_logger: AuditLogger,
        store_timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS,
    ) -> None:
        self._machine = machine
        self._uow_factory = uow_factory
        self._audit = audit_logger
        self._timeout = store_timeout_seconds

    async def create(self, entity: Any, actor: ActorContext | None = None) -> Any:
        """Persist a new entity in its declared initial state.

        The entity's state field is set to the machine's initial state when
        unset. Monetary fields are reconciled before the write.

        Raises:
            InvalidTransitionError: If the entity carries a state other than
                the declared initial state.
            PersistenceError: If the write fails or times out.
        """
        definition = self._machine.registry.resolve(entity)
        state_field = definition.state_config.field
        current = getattr(entity, state_field)
        if current is None:
            setattr(entity, state_field, definition.state_config.initial)
        elif current != definition.state_config.initial:
            raise InvalidTransitionError(
                entity_type=definition.entity_type,
                entity_id=str(entity.id),
                transition_name="create",
                from_state=None,
                to_state=current,
                message=(
                    f"{definition.entity_type} must be created in state "
                    f"'{definition.state_config.initial}', not '{current}'"
                ),
            )

        reconcile(entity, definition.monetary_fields)
        values = persisted_values(entity)
        entity.version = await bounded(
            self._add(definition.entity_type, str(entity.id), values),
            self._timeout,
            entity_type=definition.entity_type,
            entity_id=str(entity.id),
        )

        logger.info("Entity created", entity_type=definition.entity_type, entity_id=str(entity.id))
        await self._audit.log(
            actor=actor,
            entity_type=definition.entity_type,
            entity_id=str(entity.id),
            action=f"{definition.entity_type}.created",
            module=definition.module,
            new_values=_audit_safe(values),
            description=f"{definition.entity_type} {entity.id} created",
        )
        return entity

    async def get(self, entity_type: str, entity_id: str) -> Any:
        """Load and rehydrate a persisted entity.

        Raises:
            NotFoundError: If no such entity exists.
            PersistenceError: If the store fails or times out.
        """
        definition = self._machine.registry.resolve(entity_type)
        row = await bounded(
            self._read(entity_type, str(entity_id)),
            self._timeout,
            entity_type=entity_type,
            entity_id=str(entity_id),
        )
        if row is None:
            raise NotFoundError(resource=entity_type, resource_id=str(entity_id))
        return _rehydrate(definition, row)

    async def save(self, entity: Any, actor: ActorContext | None = None) -> Any:
        """Persist non-state field changes with a compare-and-set write.

        Money fields are reconciled first (minor units win). Changed fields
        are then recorded best-effort: an audit failure is logged and counted
        but never fails the save.

        Raises:
            InvalidTransitionError: If the state field was changed directly.
            ConcurrencyConflictError: If the entity was modified concurrently.
            NotFoundError: If the entity was never created.
            PersistenceError: If the store fails or times out.
        """
        definition = self._machine.registry.resolve(entity)
        reconcile(entity, definition.monetary_fields)
        values = persisted_values(entity)

        stored, version = await bounded(
            self._write(definition, entity, values),
            self._timeout,
            entity_type=definition.entity_type,
            entity_id=str(entity.id),
        )
        entity.version = version

        old_values = {key: stored.get(key) for key in values}
        await self._audit.log_field_changes(
            actor=actor,
            entity_type=definition.entity_type,
            entity_id=str(entity.id),
            module=definition.module,
            old_values=_audit_safe(old_values),
            new_values=_audit_safe(values),
            ignore={"id"},
        )
        return entity

    async def find(self, entity_type: str, **criteria: Any) -> list[Any]:
        """Return the entities of a type whose fields equal every criterion, ordered by id."""
        definition = self._machine.registry.resolve(entity_type)
        rows = await self._query(lambda uow: uow.entities.find(entity_type, **criteria), entity_type=entity_type)
        return [_rehydrate(definition, row) for row in rows]

    async def public_companies(self) -> list[Company]:
        """Companies a member of the public may see."""
        definition = self._machine.registry.resolve(Company.entity_type)
        rows = await self._query(lambda uow: uow.entities.public_companies(), entity_type=Company.entity_type)
        return [_rehydrate(definition, row) for row in rows]

    async def public_products(self, via_company: bool = False) -> list[Product]:
        """Products a member of the public may see.

        Args:
            via_company: Start from the public companies instead of checking
                each product against its own company. Both paths return the
                same products.
        """
        definition = self._machine.registry.resolve(Product.entity_type)
        rows = await self._query(
            lambda uow: uow.entities.public_products(via_company=via_company),
            entity_type=Product.entity_type,
        )
        return [_rehydrate(definition, row) for row in rows]

    async def _add(self, entity_type: str, entity_id: str, values: dict[str, Any]) -> int:
        async with self._uow_factory() as uow:
            version = await uow.entities.add(entity_type, entity_id, values)
            await uow.commit()
        return version

    async def _read(self, entity_type: str, entity_id: str) -> dict[str, Any] | None:
        async with self._uow_factory() as uow:
            return await uow.entities.get(entity_type, entity_id)

    async def _write(
        self, definition: EntityDefinition, entity: Any, values: dict[str, Any]
    ) -> tuple[dict[str, Any], int]:
        state_field = definition.state_config.field
        async with self._uow_factory() as uow:
            stored = await uow.entities.get(definition.entity_type, str(entity.id))
            if stored is None:
                raise NotFoundError(resource=definition.entity_type, resource_id=str(entity.id))
            if stored.get(state_field) != values.get(state_field):
                raise InvalidTransitionError(
                    entity_type=definition.entity_type,
                    entity_id=str(entity.id),
                    transition_name="save",
                    from_state=stored.get(state_field),
                    to_state=values.get(state_field),
                    message=f"'{state_field}' can only change through a declared transition",
                )
            version = await uow.entities.save(
                definition.entity_type,
                str(entity.id),
                values,
                expected_version=entity.version,
            )
            await uow.commit()
        return stored, version

    async def _query(
        self, read: Callable[[IUnitOfWork], Awaitable[list[dict[str, Any]]]], **context: Any
    ) -> list[dict[str, Any]]:
        async def run() -> list[dict[str, Any]]:
            async with self._uow_factory() as uow:
                return await read(uow)

        return await bounded(run(), self._timeout, **context)


class ComplianceActions:
    """Inbound business actions.

    Constructing it attaches the Go Live promotion requirements to the
    machine's company definition.

    Args:
        machine: The transition engine.
        entities: Entity persistence.
        snapshots: Snapshot engine used for purchase snapshots.
        assembler: Optional context assembler; required by
            complete_investment() when no context is passed in.
    """

    def __init__(
        self,
        machine: StateMachine,
        entities: EntityService,
        snapshots: SnapshotEngine,
        assembler: SnapshotContextAssembler | None = None,
    ) -> None:
        self._machine = machine
        self._entities = entities
        self._snapshots = snapshots
        self._assembler = assembler
        machine.registry.attach_hooks(
            Company.entity_type, "go_live", on_before=promotion_requirements(self._approved_disclosure_count)
        )

    async def perform_transition(
        self,
        entity_type: str,
        entity_id: str,
        transition: str,
        actor: ActorContext | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Load an entity by reference and execute a named transition."""
        entity = await self._entities.get(entity_type, entity_id)
        return await self._machine.transition(entity, transition, actor=actor, metadata=metadata)

    async def complete_investment(
        self,
        investment_id: str,
        actor: ActorContext | None = None,
        context: SnapshotContext | None = None,
        acknowledgements: list[Acknowledgement] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Complete an investment and freeze its purchase snapshot atomically.

        Either the transition, its audit event and the snapshot all commit,
        or none of them do.

        Returns:
            TransitionResult whose ``side_effect_result`` is the Snapshot.

        Raises:
            InvalidTransitionError: If the investment cannot complete.
            IncompleteSnapshotError: If the snapshot context is incomplete;
                the investment stays in its previous state.
        """
        investment: Investment = await self._entities.get(Investment.entity_type, investment_id)
        if context is None:
            context = await self._assemble_context(investment, acknowledgements or [])

        async def capture_snapshot(uow: IUnitOfWork, entity: Any, event: AuditEvent) -> Snapshot:
            return await self._snapshots.capture(
                subject_type=Investment.entity_type,
                subject_id=str(entity.id),
                context=context,
                trigger=INVESTMENT_PURCHASE_TRIGGER,
                uow=uow,
            )

        result = await self._machine.transition(
            investment,
            "complete",
            actor=actor,
            metadata=metadata,
            within_transaction=capture_snapshot,
        )
        logger.info(
            "Investment completed with snapshot",
            investment_id=str(investment.id),
            snapshot_id=result.side_effect_result.id,
            content_hash=result.side_effect_result.content_hash,
        )
        return result

    async def promote_company(
        self,
        company_id: str,
        target_tier: str,
        actor: ActorContext | None,
        justification: str,
        metadata: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Promote a company exactly one tier.

        Raises:
            InvalidTransitionError: For downgrades, tier skips and unknown
                targets, naming the (current, target) pair.
            TransitionVetoedError: If the actor may not promote to the target.
        """
        company: Company = await self._entities.get(Company.entity_type, company_id)
        definition = self._machine.registry.resolve(company)
        transition = next(
            (t for t in definition.state_config.transitions.values() if t.to == target_tier),
            None,
        )
        if transition is None:
            raise InvalidTransitionError(
                entity_type=Company.entity_type,
                entity_id=str(company.id),
                transition_name="promote",
                from_state=company.disclosure_tier,
                to_state=target_tier,
            )
        return await self._machine.transition(
            company,
            transition.name,
            actor=actor,
            metadata={**(metadata or {}), "justification": justification},
        )

    async def promote_to_next_tier(
        self,
        company_id: str,
        actor: ActorContext | None,
        justification: str,
        metadata: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Promote a company to the tier directly above its current one.

        Raises:
            InvalidTransitionError: If the company is already at the top tier
                or carries an unknown tier.
            TransitionVetoedError: If the actor may not promote, or Go Live
                requirements are not met.
        """
        company: Company = await self._entities.get(Company.entity_type, company_id)
        current = parse_tier(company.disclosure_tier)
        target = None if current is None else next_tier(current)
        if target is None:
            if current is None:
                message = f"Company {company.id} has unknown tier '{company.disclosure_tier}'"
            else:
                message = f"Company {company.id} is already at the maximum tier ({current.label})"
            raise InvalidTransitionError(
                entity_type=Company.entity_type,
                entity_id=str(company.id),
                transition_name="promote",
                from_state=company.disclosure_tier,
                to_state=None,
                message=message,
            )
        return await self.promote_company(company_id, target.value, actor, justification, metadata=metadata)

    async def verify_company_snapshots(self, company_id: str) -> CompanyVerificationSummary:
        """Verify every investment snapshot taken for a company.

        Each investment is verified on its own; tampered and unreadable
        snapshots are reported in the summary, never raised.
        """
        investments = await self._entities.find(Investment.entity_type, company_id=str(company_id))
        summaries = [
            await self._snapshots.verify_all_for_subject(Investment.entity_type, str(investment.id))
            for investment in investments
        ]
        summary = CompanyVerificationSummary.combine(str(company_id), summaries)
        log = logger.info if summary.all_verified else logger.error
        log(
            "Company snapshots verified",
            company_id=str(company_id),
            total_snapshots=summary.total_snapshots,
            tampered=summary.tampered,
            errors=summary.errors,
        )
        return summary

    async def investor_view_history(self, investor_id: str, company_id: str) -> list[Snapshot]:
        """Every snapshot of what an investor was shown for a company, newest first.

        Raises:
            TamperDetectedError: If a stored snapshot no longer rehydrates.
        """
        investments = await self._entities.find(
            Investment.entity_type, investor_id=str(investor_id), company_id=str(company_id)
        )
        snapshots = [
            snapshot
            for investment in investments
            for snapshot in await self._snapshots.history_for_subject(Investment.entity_type, str(investment.id))
        ]
        return sorted(snapshots, key=lambda snapshot: (snapshot.captured_at, snapshot.id), reverse=True)

    async def _approved_disclosure_count(self, company_id: str) -> int:
        approved = await self._entities.find(
            Disclosure.entity_type, company_id=company_id, status=APPROVED_DISCLOSURE_STATUS
        )
        return len(approved)

    async def _assemble_context(
        self, investment: Investment, acknowledgements: list[Acknowledgement]
    ) -> SnapshotContext:
        if self._assembler is None:
            raise ValueError("complete_investment() needs a context or a SnapshotContextAssembler")
        company: Company = await self._entities.get(Company.entity_type, investment.company_id)
        return await self._assembler.assemble(
            company_id=str(company.id),
            company_state=company_state(company),
            financial_terms=financial_terms(investment),
            acknowledgements=acknowledgements,
        )


def company_state(company: Company) -> dict[str, Any]:
    """The company facts frozen into a purchase snapshot."""
    return {
        "company_id": str(company.id),
        "name": company.name,
        "disclosure_tier": company.disclosure_tier,
        "publicly_visible": company_is_public(company),
    }


def financial_terms(investment: Investment) -> dict[str, Any]:
    """The investment's computed financial terms, from authoritative minor units."""
    reconcile(investment, INVESTMENT_MONEY)
    amount = get_amount(investment, INVESTMENT_MONEY, "amount") or Decimal("0.00")
    fee = get_amount(investment, INVESTMENT_MONEY, "fee") or Decimal("0.00")
    return {
        "investment_id": str(investment.id),
        "amount": amount,
        "amount_paise": investment.amount_paise or 0,
        "fee": fee,
        "fee_paise": investment.fee_paise or 0,
        "total_amount": amount + fee,
        "total_paise": (investment.amount_paise or 0) + (investment.fee_paise or 0),
    }


def _audit_safe(values: dict[str, Any]) -> dict[str, Any]:
    """Render Decimal values as strings so audit payloads stay JSON-native."""
    return {key: str(value) if isinstance(value, Decimal) else value for key, value in values.items()}


def _rehydrate(definition: EntityDefinition, row: dict[str, Any]) -> Any:
    names = {item.name for item in dataclasses.fields(definition.entity_class)}
    return definition.entity_class(**{key: value for key, value in row.items() if key in names})
