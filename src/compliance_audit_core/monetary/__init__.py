"""Monetary normalizer: exact decimal / minor-unit conversion for money fields."""

from __future__ import annotations

from compliance_audit_core.monetary.normalizer import (
    MAX_AMOUNT,
    MAX_MINOR_UNITS,
    MonetaryField,
    get_amount,
    reconcile,
    set_amount,
    set_amount_from_minor,
    to_decimal,
    to_minor_units,
)

__all__ = [
    "MAX_AMOUNT",
    "MAX_MINOR_UNITS",
    "MonetaryField",
    "get_amount",
    "reconcile",
    "set_amount",
    "set_amount_from_minor",
    "to_decimal",
    "to_minor_units",
]
