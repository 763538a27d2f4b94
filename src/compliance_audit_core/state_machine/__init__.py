"""State machine engine: declared, audited entity state transitions."""

from __future__ import annotations

from compliance_audit_core.state_machine.config import (
    AvailableTransition,
    EntityDefinition,
    StateConfig,
    Transition,
    TransitionContext,
    TransitionHook,
    state_config,
)
from compliance_audit_core.state_machine.engine import StateMachine, TransitionResult, entity_values
from compliance_audit_core.state_machine.registry import StateConfigRegistry, entity_type_of

__all__ = [
    "AvailableTransition",
    "EntityDefinition",
    "StateConfig",
    "StateConfigRegistry",
    "StateMachine",
    "Transition",
    "TransitionContext",
    "TransitionHook",
    "TransitionResult",
    "entity_type_of",
    "entity_values",
    "state_config",
]
