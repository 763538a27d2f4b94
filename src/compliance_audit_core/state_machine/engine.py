"""State transition engine.

StateMachine validates and executes declared transitions for any registered
entity type. A successful transition persists the new state and exactly one
audit event in a single unit of work; an optional in-transaction side effect
(snapshot capture) joins the same commit. Failed or vetoed transitions write
nothing.

Per-entity serialization uses optimistic versioning: a lost compare-and-set
reloads the entity's persisted state and re-validates, up to
``max_retries`` times.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from compliance_audit_core.audit_trail.events import ActorContext, AuditEvent, make_event
from compliance_audit_core.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
)
from compliance_audit_core.monetary.normalizer import reconcile
from compliance_audit_core.observability import AuditMetrics, get_logger
from compliance_audit_core.observability import metrics as default_metrics
from compliance_audit_core.state_machine.config import (
    AvailableTransition,
    EntityDefinition,
    Transition,
    TransitionContext,
    TransitionHook,
)
from compliance_audit_core.state_machine.registry import StateConfigRegistry
from compliance_audit_core.timeouts import DEFAULT_STORE_TIMEOUT_SECONDS, bounded

if TYPE_CHECKING:
    from compliance_audit_core.core.interfaces import IUnitOfWork, UnitOfWorkFactory
    from compliance_audit_core.settings import Settings

logger = get_logger(__name__)

SideEffect = Callable[["IUnitOfWork", Any, AuditEvent], Awaitable[Any]]


@dataclass
class TransitionResult:
    """Outcome of a committed transition.

    Attributes:
        entity: The entity, now in ``to_state``.
        event: The audit event written with the transition.
        from_state: State before the transition.
        to_state: State after the transition.
        side_effect_result: Return value of the in-transaction side effect.
        hook_errors: Exceptions raised by the after-transition hook.
        degraded: True when the transition committed but a post-commit hook
            failed.
    """

    entity: Any
    event: AuditEvent
    from_state: str
    to_state: str
    side_effect_result: Any = None
    hook_errors: list[BaseException] = field(default_factory=list)
    degraded: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.degraded


async def _invoke(hook: TransitionHook, context: TransitionContext) -> None:
    outcome = hook(context)
    if inspect.isawaitable(outcome):
        await outcome


def entity_values(entity: Any, definition: EntityDefinition) -> dict[str, Any]:
    """Return the persisted values a transition writes: state plus money fields."""
    values: dict[str, Any] = {
        definition.state_config.field: getattr(entity, definition.state_config.field)
    }
    for money in definition.monetary_fields:
        values[money.decimal_attr] = getattr(entity, money.decimal_attr, None)
        values[money.minor_attr] = getattr(entity, money.minor_attr, None)
    return values


class StateMachine:
    """Validates and executes declared transitions.

    Args:
        registry: Entity definitions.
        uow_factory: Returns a fresh unit of work per attempt.
        store_timeout_seconds: Upper bound for one transactional attempt.
        max_retries: Re-validations after a concurrency conflict.
        metrics: Metrics holder; defaults to the process-wide instance.
    """

    def __init__(
        self,
        registry: StateConfigRegistry,
        uow_factory: UnitOfWorkFactory,
        store_timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS,
        max_retries: int = 3,
        metrics: AuditMetrics | None = None,
    ) -> None:
        self._registry = registry
        self._uow_factory = uow_factory
        self._timeout = store_timeout_seconds
        self._max_retries = max_retries
        self._metrics = metrics or default_metrics

    @classmethod
    def from_settings(
        cls,
        registry: StateConfigRegistry,
        uow_factory: UnitOfWorkFactory,
        settings: Settings,
        metrics: AuditMetrics | None = None,
    ) -> StateMachine:
        return cls(
            registry,
            uow_factory,
            store_timeout_seconds=settings.store_timeout_seconds,
            max_retries=settings.transition_max_retries,
            metrics=metrics,
        )

    @property
    def registry(self) -> StateConfigRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Read-only predicates
    # ------------------------------------------------------------------

    def can_transition(self, entity: Any, transition_name: str) -> bool:
        """Return True if the named transition is legal from the current state.

        Raises:
            ConfigurationError: If the entity type declares no state machine.
        """
        definition = self._registry.resolve(entity)
        transition = definition.state_config.transitions.get(transition_name)
        if transition is None:
            return False
        return getattr(entity, definition.state_config.field) in transition.from_states

    def available_transitions(self, entity: Any) -> list[AvailableTransition]:
        """Return every transition legal from the entity's current state."""
        definition = self._registry.resolve(entity)
        current = getattr(entity, definition.state_config.field)
        return [
            AvailableTransition(name=transition.name, to=transition.to, label=transition.label)
            for transition in definition.state_config.transitions.values()
            if current in transition.from_states
        ]

    # ------------------------------------------------------------------
    # Transition
    # ------------------------------------------------------------------

    def _legal_transition(self, definition: EntityDefinition, entity: Any, transition_name: str) -> Transition:
        current = getattr(entity, definition.state_config.field)
        transition = definition.state_config.transitions.get(transition_name)
        if transition is None or current not in transition.from_states:
            raise InvalidTransitionError(
                entity_type=definition.entity_type,
                entity_id=str(entity.id),
                transition_name=transition_name,
                from_state=current,
                to_state=None if transition is None else transition.to,
            )
        return transition

    async def transition(
        self,
        entity: Any,
        transition_name: str,
        actor: ActorContext | None = None,
        metadata: Mapping[str, Any] | None = None,
        within_transaction: SideEffect | None = None,
    ) -> TransitionResult:
        """Execute a named transition.

        Args:
            entity: A registered entity carrying ``id`` and ``version``.
            transition_name: Name from the entity's transition table.
            actor: Acting principal; None is recorded as the system actor.
            metadata: Extra context recorded on the audit event.
            within_transaction: Awaitable side effect run inside the same
                unit of work after the audit event is staged. Raising rolls
                back the transition.

        Returns:
            TransitionResult; ``degraded`` is set when the after hook failed.

        Raises:
            ConfigurationError: If the entity type declares no state machine.
            InvalidTransitionError: If the transition is unknown or not legal
                from the current state, or a before hook vetoed it.
            PersistenceError: If the store fails, times out, or the entity
                keeps losing concurrent updates.
        """
        definition = self._registry.resolve(entity)
        actor = actor or ActorContext.system()
        extra = dict(metadata or {})
        attempt = 0

        while True:
            from_state = getattr(entity, definition.state_config.field)
            transition = self._legal_transition(definition, entity, transition_name)
            context = TransitionContext(
                entity=entity,
                entity_type=definition.entity_type,
                transition=transition,
                from_state=from_state,
                actor=actor,
                metadata=extra,
            )
            if transition.on_before is not None:
                await _invoke(transition.on_before, context)

            try:
                event, new_version, side_effect_result = await bounded(
                    self._persist(definition, entity, transition, from_state, actor, extra, within_transaction),
                    self._timeout,
                    entity_type=definition.entity_type,
                    entity_id=str(entity.id),
                    transition=transition_name,
                )
            except ConcurrencyConflictError:
                if attempt >= self._max_retries:
                    logger.warning(
                        "Transition abandoned after repeated concurrency conflicts",
                        entity_type=definition.entity_type,
                        entity_id=str(entity.id),
                        transition=transition_name,
                        attempts=attempt + 1,
                    )
                    raise
                attempt += 1
                logger.info(
                    "Concurrency conflict; reloading and re-validating",
                    entity_type=definition.entity_type,
                    entity_id=str(entity.id),
                    transition=transition_name,
                    attempt=attempt,
                )
                await self.reload(entity)
                continue
            break

        setattr(entity, definition.state_config.field, transition.to)
        entity.version = new_version
        self._metrics.transitions_total.labels(
            entity_type=definition.entity_type, transition=transition_name
        ).inc()
        logger.info(
            "State transition committed",
            entity_type=definition.entity_type,
            entity_id=str(entity.id),
            transition=transition_name,
            from_state=from_state,
            to_state=transition.to,
            event_id=event.id,
            actor_id=event.actor_id,
        )

        result = TransitionResult(
            entity=entity,
            event=event,
            from_state=from_state,
            to_state=transition.to,
            side_effect_result=side_effect_result,
        )
        if transition.on_after is not None:
            try:
                await _invoke(transition.on_after, context)
            except Exception as exc:  # noqa: BLE001
                self._metrics.transition_hook_failures.labels(
                    entity_type=definition.entity_type, transition=transition_name
                ).inc()
                logger.error(
                    "After-transition hook failed; transition remains committed",
                    entity_type=definition.entity_type,
                    entity_id=str(entity.id),
                    transition=transition_name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                result.hook_errors.append(exc)
                result.degraded = True
        return result

    async def _persist(
        self,
        definition: EntityDefinition,
        entity: Any,
        transition: Transition,
        from_state: str,
        actor: ActorContext,
        metadata: dict[str, Any],
        within_transaction: SideEffect | None,
    ) -> tuple[AuditEvent, int, Any]:
        state_field = definition.state_config.field
        reconcile(entity, definition.monetary_fields)
        values = entity_values(entity, definition)
        values[state_field] = transition.to

        async with self._uow_factory() as uow:
            new_version = await uow.entities.save(
                definition.entity_type,
                str(entity.id),
                values,
                expected_version=entity.version,
            )
            event = make_event(
                actor=actor,
                entity_type=definition.entity_type,
                entity_id=str(entity.id),
                action=f"{definition.entity_type}.{transition.name}",
                module=definition.module,
                old_values={state_field: from_state},
                new_values={state_field: transition.to},
                description=f"{transition.label}: {from_state} -> {transition.to}",
                metadata={"transition": transition.name, "label": transition.label, **metadata},
            )
            await uow.audit_events.append(event)
            side_effect_result = None
            if within_transaction is not None:
                side_effect_result = await within_transaction(uow, entity, event)
            await uow.commit()
        return event, new_version, side_effect_result

    async def reload(self, entity: Any) -> Any:
        """Refresh an entity's attributes and version from the store.

        Raises:
            NotFoundError: If the entity is not persisted.
            PersistenceError: If the store fails or times out.
        """
        definition = self._registry.resolve(entity)
        async with self._uow_factory() as uow:
            row = await bounded(
                uow.entities.get(definition.entity_type, str(entity.id)),
                self._timeout,
                entity_type=definition.entity_type,
                entity_id=str(entity.id),
            )
        if row is None:
            raise NotFoundError(resource=definition.entity_type, resource_id=str(entity.id))
        for name, value in row.items():
            if hasattr(entity, name):
                setattr(entity, name, value)
        return entity
