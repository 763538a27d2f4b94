"""Audit event schema and actor context.

Every change the engine makes is captured as an immutable AuditEvent. Events
carry the field-level old/new values, the resolved actor, and free-form
metadata. Corrections never modify an event; they are new events whose
``corrects_event_id`` points at the event being corrected.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from compliance_audit_core.snapshots.canonical import normalize

SYSTEM_ACTOR_ID = "system"
SYSTEM_ACTOR_TYPE = "System"


class ActorContext(BaseModel):
    """The principal on whose behalf an operation runs.

    Passed explicitly into every engine call; the engine never looks up a
    "current user" on its own.

    Attributes:
        actor_id: Identifier of the principal, None when unauthenticated.
        actor_type: Concrete principal type (``User``, ``CompanyUser``, ...).
        roles: Role names used by authorization hooks.
        authenticated: Whether the principal was authenticated upstream.
    """

    model_config = ConfigDict(frozen=True)

    actor_id: str | None = None
    actor_type: str = SYSTEM_ACTOR_TYPE
    roles: frozenset[str] = frozenset()
    authenticated: bool = False

    @classmethod
    def system(cls) -> ActorContext:
        """Return the sentinel actor used for unauthenticated/automated work."""
        return cls(actor_id=SYSTEM_ACTOR_ID, actor_type=SYSTEM_ACTOR_TYPE, authenticated=False)

    @classmethod
    def user(cls, actor_id: str, actor_type: str = "User", roles: set[str] | None = None) -> ActorContext:
        """Return an authenticated actor."""
        return cls(
            actor_id=actor_id,
            actor_type=actor_type,
            roles=frozenset(roles or ()),
            authenticated=True,
        )

    @property
    def is_system(self) -> bool:
        return not (self.authenticated and self.actor_id)

    def has_role(self, role: str) -> bool:
        return role in self.roles


def resolve_actor(actor: ActorContext | None) -> tuple[str, str]:
    """Resolve the (actor_id, actor_type) pair recorded on an audit event.

    Authenticated principals keep their id and concrete type. Anything else
    is recorded as the ``System`` sentinel, never as null.
    """
    if actor is None or actor.is_system:
        return SYSTEM_ACTOR_ID, SYSTEM_ACTOR_TYPE
    return str(actor.actor_id), actor.actor_type


class AuditEvent(BaseModel):
    """Immutable record of a change, who made it, and when.

    Attributes:
        id: UUID v4 string.
        occurred_at: UTC timestamp of the change.
        actor_id: Resolved actor id (``system`` for the sentinel).
        actor_type: Resolved actor type (``System`` for the sentinel).
        entity_type: Type of the changed entity (``company``, ``investment``).
        entity_id: Identifier of the changed entity.
        action: Dot-notation action name, e.g. ``company.go_live``.
        module: Functional module that produced the change.
        old_values: Field values before the change.
        new_values: Field values after the change.
        description: Human-readable summary.
        metadata: Additional structured context.
        corrects_event_id: For correction events, the event being corrected.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    actor_id: str
    actor_type: str
    entity_type: str
    entity_id: str
    action: str
    module: str
    old_values: dict[str, Any] = Field(default_factory=dict)
    new_values: dict[str, Any] = Field(default_factory=dict)
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    corrects_event_id: str | None = None

    @property
    def touched_fields(self) -> set[str]:
        """Names of every field this event touched."""
        return set(self.old_values) | set(self.new_values)


class AuditQuery(BaseModel):
    """Filter for audit trail queries.

    All filters are optional and combined with AND. ``action_prefix`` matches
    with startswith, ``field`` matches events whose old or new values include
    that field.
    """

    model_config = ConfigDict(frozen=True)

    entity_type: str | None = None
    entity_id: str | None = None
    field: str | None = None
    action_prefix: str | None = None
    actor_id: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    ascending: bool = False

    def matches(self, event: AuditEvent) -> bool:
        """Return True if the event satisfies every set filter."""
        if self.entity_type is not None and event.entity_type != self.entity_type:
            return False
        if self.entity_id is not None and event.entity_id != self.entity_id:
            return False
        if self.field is not None and self.field not in event.touched_fields:
            return False
        if self.action_prefix is not None and not event.action.startswith(self.action_prefix):
            return False
        if self.actor_id is not None and event.actor_id != self.actor_id:
            return False
        if self.start_time is not None and event.occurred_at < self.start_time:
            return False
        if self.end_time is not None and event.occurred_at > self.end_time:
            return False
        return True


class AuditHistoryPage(BaseModel):
    """One page of an entity's reverse-chronological audit history."""

    model_config = ConfigDict(frozen=True)

    entity_type: str
    entity_id: str
    page: int
    page_size: int
    items: list[AuditEvent]
    has_more: bool


def make_event(
    actor: ActorContext | None,
    entity_type: str,
    entity_id: str,
    action: str,
    module: str,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    description: str = "",
    metadata: dict[str, Any] | None = None,
    corrects_event_id: str | None = None,
) -> AuditEvent:
    """Build an AuditEvent with the actor resolved per the sentinel policy.

    Values and metadata are normalized to JSON-native types (Decimal and
    datetime become strings) so the in-memory and SQL stores hold the same
    payload.
    """
    actor_id, actor_type = resolve_actor(actor)
    return AuditEvent(
        actor_id=actor_id,
        actor_type=actor_type,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        module=module,
        old_values=normalize(old_values or {}),
        new_values=normalize(new_values or {}),
        description=description,
        metadata=normalize(metadata or {}),
        corrects_event_id=corrects_event_id,
    )
