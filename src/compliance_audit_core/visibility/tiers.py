"""Company disclosure tiers.

Tiers are ordered and only ever promoted, one step at a time, through the
company state machine::

    tier_0_pending -> tier_1_upcoming -> tier_2_live -> tier_3_featured

A company is publicly visible from ``tier_2_live`` upwards. Missing or
unrecognised tier values are never public.
"""

from __future__ import annotations

import enum
from typing import Any


class VisibilityTier(str, enum.Enum):
    PENDING = "tier_0_pending"
    UPCOMING = "tier_1_upcoming"
    LIVE = "tier_2_live"
    FEATURED = "tier_3_featured"

    @property
    def rank(self) -> int:
        return _ORDER.index(self)

    @property
    def is_public(self) -> bool:
        return self.rank >= PUBLIC_THRESHOLD.rank

    @property
    def label(self) -> str:
        return _LABELS[self]


_ORDER: list[VisibilityTier] = [
    VisibilityTier.PENDING,
    VisibilityTier.UPCOMING,
    VisibilityTier.LIVE,
    VisibilityTier.FEATURED,
]

_LABELS: dict[VisibilityTier, str] = {
    VisibilityTier.PENDING: "Pending",
    VisibilityTier.UPCOMING: "Upcoming",
    VisibilityTier.LIVE: "Live",
    VisibilityTier.FEATURED: "Featured",
}

PUBLIC_THRESHOLD = VisibilityTier.LIVE

# Single source of truth for both the Python predicate and the SQL clause.
PUBLIC_TIERS: frozenset[str] = frozenset(tier.value for tier in _ORDER if tier.rank >= PUBLIC_THRESHOLD.rank)


def parse_tier(value: Any) -> VisibilityTier | None:
    """Return the tier for a raw value, or None when missing or unknown."""
    if isinstance(value, VisibilityTier):
        return value
    if not isinstance(value, str):
        return None
    try:
        return VisibilityTier(value)
    except ValueError:
        return None


def tier_is_public(value: Any) -> bool:
    """Fail-closed public check for a raw tier value."""
    tier = parse_tier(value)
    return tier is not None and tier.value in PUBLIC_TIERS


def next_tier(tier: VisibilityTier) -> VisibilityTier | None:
    """Return the tier one step above, or None at the top."""
    position = tier.rank + 1
    return _ORDER[position] if position < len(_ORDER) else None
