"""Static entity definitions: state machines and monetary fields per entity type.

This is deploy-time configuration. Collaborators that need to react to a
transition attach hooks through StateConfigRegistry.attach_hooks() rather
than editing these declarations.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from compliance_audit_core.domain.entities import Company, Disclosure, Investment, Product
from compliance_audit_core.errors import TransitionVetoedError
from compliance_audit_core.monetary.normalizer import MonetaryField
from compliance_audit_core.state_machine.config import (
    EntityDefinition,
    Transition,
    TransitionContext,
    TransitionHook,
    state_config,
)
from compliance_audit_core.state_machine.registry import StateConfigRegistry
from compliance_audit_core.visibility.tiers import VisibilityTier

ADMIN_ROLES = frozenset({"admin", "super_admin"})

INVESTMENT_MONEY = (MonetaryField.named("amount"), MonetaryField.named("fee"))

MIN_APPROVED_DISCLOSURES_TO_GO_LIVE = 1

ApprovedDisclosureCount = Callable[[str], Awaitable[int]]


def authorize_promotion(context: TransitionContext) -> None:
    """Veto tier promotions the actor may not perform.

    The system actor may only promote to Upcoming. Live and Featured are
    admin-only decisions.

    Raises:
        TransitionVetoedError: If the actor is not allowed to promote.
    """
    target = context.transition.to
    actor = context.actor
    if actor.is_system:
        allowed = target == VisibilityTier.UPCOMING.value
    else:
        allowed = bool(ADMIN_ROLES & actor.roles)
    if not allowed:
        raise TransitionVetoedError(
            entity_type=context.entity_type,
            entity_id=str(context.entity.id),
            transition_name=context.transition.name,
            from_state=context.from_state,
            to_state=target,
            message=(
                f"Actor {actor.actor_id or 'system'} is not authorized to promote "
                f"from {context.from_state} to {target}"
            ),
        )


def promotion_requirements(approved_disclosures: ApprovedDisclosureCount) -> TransitionHook:
    """Build the Go Live before-hook.

    Authorization is checked first. A company then needs at least one
    approved disclosure before it may go live. Featured needs no extra check
    here: the only transition into it starts from Live.

    Args:
        approved_disclosures: Returns the number of approved disclosures for
            a company id.
    """

    async def check(context: TransitionContext) -> None:
        authorize_promotion(context)
        company_id = str(context.entity.id)
        approved = await approved_disclosures(company_id)
        if approved < MIN_APPROVED_DISCLOSURES_TO_GO_LIVE:
            raise TransitionVetoedError(
                entity_type=context.entity_type,
                entity_id=company_id,
                transition_name=context.transition.name,
                from_state=context.from_state,
                to_state=context.transition.to,
                message=(
                    f"Company {company_id} needs at least {MIN_APPROVED_DISCLOSURES_TO_GO_LIVE} approved "
                    f"disclosure to go live ({approved} approved)"
                ),
            )

    return check


COMPANY = EntityDefinition(
    entity_type=Company.entity_type,
    entity_class=Company,
    module="company_governance",
    state_config=state_config(
        field="disclosure_tier",
        states=[tier.value for tier in VisibilityTier],
        initial=VisibilityTier.PENDING.value,
        transitions=[
            Transition.between(
                "promote_to_upcoming",
                VisibilityTier.PENDING.value,
                VisibilityTier.UPCOMING.value,
                label="Promote to Upcoming",
                on_before=authorize_promotion,
            ),
            Transition.between(
                "go_live",
                VisibilityTier.UPCOMING.value,
                VisibilityTier.LIVE.value,
                label="Go Live",
                on_before=authorize_promotion,
            ),
            Transition.between(
                "feature",
                VisibilityTier.LIVE.value,
                VisibilityTier.FEATURED.value,
                label="Feature",
                on_before=authorize_promotion,
            ),
        ],
    ),
)

PRODUCT = EntityDefinition(
    entity_type=Product.entity_type,
    entity_class=Product,
    module="products",
    state_config=state_config(
        field="status",
        states=["draft", "submitted", "approved", "rejected"],
        transitions=[
            Transition.between("submit", "draft", "submitted"),
            Transition.between("approve", "submitted", "approved"),
            Transition.between("reject", "submitted", "rejected"),
        ],
    ),
)

INVESTMENT = EntityDefinition(
    entity_type=Investment.entity_type,
    entity_class=Investment,
    module="investments",
    state_config=state_config(
        field="status",
        states=["pending", "processing", "completed", "failed", "cancelled"],
        transitions=[
            Transition.between("start_processing", "pending", "processing"),
            Transition.between("complete", "processing", "completed"),
            Transition.between("fail", "processing", "failed"),
            Transition.between("cancel", "pending", "cancelled"),
        ],
    ),
    monetary_fields=INVESTMENT_MONEY,
)

DISCLOSURE = EntityDefinition(
    entity_type=Disclosure.entity_type,
    entity_class=Disclosure,
    module="disclosures",
    state_config=state_config(
        field="status",
        states=["draft", "submitted", "under_review", "clarification_required", "approved", "rejected"],
        transitions=[
            Transition.between("submit", "draft", "submitted"),
            Transition.between("start_review", "submitted", "under_review"),
            Transition.between("request_clarification", "under_review", "clarification_required"),
            Transition.between("resubmit", "clarification_required", "submitted"),
            Transition.between("approve", "under_review", "approved"),
            Transition.between("reject", "under_review", "rejected"),
        ],
    ),
)

DEFINITIONS: tuple[EntityDefinition, ...] = (COMPANY, PRODUCT, INVESTMENT, DISCLOSURE)


def build_registry() -> StateConfigRegistry:
    """Return a fresh registry holding every built-in definition."""
    return StateConfigRegistry(list(DEFINITIONS))
