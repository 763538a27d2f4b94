"""Static state machine declarations.

Each entity type declares, at configuration time, which attribute holds its
state, the set of allowed states, and a table of named transitions. Hooks are
explicit callbacks attached to a transition, never looked up by name.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from compliance_audit_core.audit_trail.events import ActorContext
from compliance_audit_core.errors import ConfigurationError
from compliance_audit_core.monetary.normalizer import MonetaryField


@dataclass(frozen=True)
class TransitionContext:
    """Arguments handed to transition hooks.

    Attributes:
        entity: The entity being transitioned. Hooks must not mutate its state.
        entity_type: The entity's registered type key.
        transition: The transition being executed.
        from_state: State before the transition.
        actor: The acting principal.
        metadata: Caller-supplied metadata.
    """

    entity: Any
    entity_type: str
    transition: Transition
    from_state: str
    actor: ActorContext
    metadata: Mapping[str, Any]


TransitionHook = Callable[[TransitionContext], Awaitable[None] | None]


@dataclass(frozen=True)
class Transition:
    """A named, declared state-to-state move.

    Attributes:
        name: Transition name used by callers (``approve``).
        from_states: States the transition may start from.
        to: Target state.
        label: Human-readable label for UIs.
        on_before: Called before any write; raising vetoes the transition.
        on_after: Called after commit; failures degrade the result but never
            roll back the committed change.
    """

    name: str
    from_states: frozenset[str]
    to: str
    label: str = ""
    on_before: TransitionHook | None = None
    on_after: TransitionHook | None = None

    @classmethod
    def between(
        cls,
        name: str,
        from_states: str | set[str] | frozenset[str] | list[str],
        to: str,
        label: str = "",
        on_before: TransitionHook | None = None,
        on_after: TransitionHook | None = None,
    ) -> Transition:
        sources = frozenset([from_states]) if isinstance(from_states, str) else frozenset(from_states)
        return cls(
            name=name,
            from_states=sources,
            to=to,
            label=label or name.replace("_", " ").title(),
            on_before=on_before,
            on_after=on_after,
        )


@dataclass(frozen=True)
class StateConfig:
    """State declaration of one entity type.

    Attributes:
        field: Attribute holding the current state.
        states: Every allowed state.
        initial: State newly created entities start in.
        transitions: Transition table keyed by transition name.
    """

    field: str
    states: frozenset[str]
    initial: str
    transitions: Mapping[str, Transition]

    def validate(self, entity_type: str) -> None:
        """Check internal consistency.

        Raises:
            ConfigurationError: If the initial state, a transition source, or
                a transition target is not a declared state.
        """
        if not self.states:
            raise ConfigurationError(f"{entity_type}: state machine declares no states")
        if self.initial not in self.states:
            raise ConfigurationError(
                f"{entity_type}: initial state '{self.initial}' is not a declared state"
            )
        for name, transition in self.transitions.items():
            if name != transition.name:
                raise ConfigurationError(f"{entity_type}: transition key '{name}' != '{transition.name}'")
            undeclared = (transition.from_states | {transition.to}) - self.states
            if undeclared:
                raise ConfigurationError(
                    f"{entity_type}: transition '{name}' references undeclared states "
                    f"{sorted(undeclared)}"
                )


@dataclass(frozen=True)
class EntityDefinition:
    """Static configuration surface of one entity type.

    Attributes:
        entity_type: Registry key, also recorded on audit events.
        entity_class: Class used to rehydrate persisted rows.
        module: Functional module recorded on audit events.
        state_config: The entity's state machine.
        monetary_fields: Money fields reconciled before every persist.
    """

    entity_type: str
    entity_class: type
    module: str
    state_config: StateConfig
    monetary_fields: tuple[MonetaryField, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AvailableTransition:
    """A transition currently legal for an entity."""

    name: str
    to: str
    label: str


def state_config(
    field: str,
    states: set[str] | frozenset[str] | list[str],
    transitions: list[Transition],
    initial: str | None = None,
) -> StateConfig:
    """Convenience builder: ``state_config("status", {...}, [Transition.between(...)])``."""
    ordered = list(states)
    return StateConfig(
        field=field,
        states=frozenset(ordered),
        initial=initial if initial is not None else ordered[0],
        transitions={transition.name: transition for transition in transitions},
    )
