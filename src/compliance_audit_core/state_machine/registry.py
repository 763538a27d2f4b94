"""Registry of entity definitions.

Definitions are registered once at startup (see domain/definitions.py) and
resolved by entity type key or by entity instance. Hooks can be attached
after registration so collaborators (notifications, authorization) stay out
of the static declarations.
"""

from __future__ import annotations

import dataclasses
from typing import Any

from compliance_audit_core.errors import ConfigurationError
from compliance_audit_core.state_machine.config import EntityDefinition, TransitionHook


def entity_type_of(entity: Any) -> str:
    """Return the registry key declared by an entity instance or class."""
    if isinstance(entity, str):
        return entity
    entity_type = getattr(entity, "entity_type", None)
    if not entity_type:
        raise ConfigurationError(
            f"{type(entity).__name__} does not declare an entity_type",
            entity_class=type(entity).__name__,
        )
    return str(entity_type)


class StateConfigRegistry:
    """Holds one EntityDefinition per entity type."""

    def __init__(self, definitions: list[EntityDefinition] | None = None) -> None:
        self._definitions: dict[str, EntityDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: EntityDefinition) -> None:
        """Validate and register a definition.

        Raises:
            ConfigurationError: If the state config is inconsistent or the
                entity type is already registered.
        """
        if definition.entity_type in self._definitions:
            raise ConfigurationError(f"{definition.entity_type} is already registered")
        definition.state_config.validate(definition.entity_type)
        self._definitions[definition.entity_type] = definition

    def resolve(self, entity: Any) -> EntityDefinition:
        """Return the definition for an entity, its class, or its type key.

        Raises:
            ConfigurationError: If the entity type never declared a state machine.
        """
        entity_type = entity_type_of(entity)
        definition = self._definitions.get(entity_type)
        if definition is None:
            raise ConfigurationError(
                f"No state machine declared for entity type '{entity_type}'",
                entity_type=entity_type,
            )
        return definition

    def attach_hooks(
        self,
        entity_type: str,
        transition_name: str,
        on_before: TransitionHook | None = None,
        on_after: TransitionHook | None = None,
    ) -> None:
        """Attach before/after callbacks to a declared transition.

        Passing None leaves the existing hook in place.

        Raises:
            ConfigurationError: If the entity type or transition is unknown.
        """
        definition = self.resolve(entity_type)
        transitions = dict(definition.state_config.transitions)
        transition = transitions.get(transition_name)
        if transition is None:
            raise ConfigurationError(
                f"{entity_type} declares no transition '{transition_name}'",
                entity_type=entity_type,
                transition=transition_name,
            )
        transitions[transition_name] = dataclasses.replace(
            transition,
            on_before=on_before or transition.on_before,
            on_after=on_after or transition.on_after,
        )
        state_config = dataclasses.replace(definition.state_config, transitions=transitions)
        self._definitions[entity_type] = dataclasses.replace(definition, state_config=state_config)

    def entity_types(self) -> list[str]:
        return sorted(self._definitions)

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._definitions
