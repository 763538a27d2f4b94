"""Monetary normalization between decimal and integer minor-unit forms.

Every money value is stored twice: a human-readable decimal with two
fractional digits (``fee``) and an exact integer count of minor units
(``fee_paise``). The minor-unit form is authoritative; the decimal form is a
derived convenience that is re-derived on every reconcile so repeated
decimal round-trips can never drift.

All arithmetic uses ``decimal.Decimal``. Floats are accepted at the edge but
converted through their shortest repr (``str(150.005) == "150.005"``) so the
binary approximation never reaches the rounding step.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Any

from compliance_audit_core.errors import ConfigurationError, InvalidAmountError

MINOR_UNITS_PER_MAJOR = 100
TWO_PLACES = Decimal("0.01")
# Largest value both the BIGINT minor-unit column and the NUMERIC(18, 2) decimal column hold.
MAX_MINOR_UNITS = 10**18 - 1
MAX_AMOUNT = Decimal(MAX_MINOR_UNITS).scaleb(-2)


@dataclass(frozen=True)
class MonetaryField:
    """Declaration of one logical money field on an entity.

    Attributes:
        name: Logical field name used by accessors (e.g. ``fee``).
        decimal_attr: Attribute holding the decimal form.
        minor_attr: Attribute holding the integer minor-unit form.
    """

    name: str
    decimal_attr: str
    minor_attr: str

    @classmethod
    def named(cls, name: str, minor_suffix: str = "_paise") -> MonetaryField:
        """Build the conventional ``<name>`` / ``<name>_paise`` pair."""
        return cls(name=name, decimal_attr=name, minor_attr=f"{name}{minor_suffix}")


def _parse_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise InvalidAmountError(value, "booleans are not amounts")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip())
        except InvalidOperation as exc:
            raise InvalidAmountError(value, "not a number") from exc
    else:
        raise InvalidAmountError(value, f"unsupported type {type(value).__name__}")

    if not amount.is_finite():
        raise InvalidAmountError(value, "must be finite")
    if amount < 0:
        raise InvalidAmountError(value, "must be non-negative")
    if amount > MAX_AMOUNT:
        raise InvalidAmountError(value, f"exceeds the maximum amount {MAX_AMOUNT}")
    return amount


def to_minor_units(amount: Any) -> int:
    """Convert a major-unit amount to integer minor units.

    Args:
        amount: Decimal, int, float or numeric string in major units
            (rupees, dollars). ``150.005`` becomes ``15001``.

    Returns:
        The exact minor-unit integer, rounded half-up at two places.

    Raises:
        InvalidAmountError: If the input is not a non-negative finite number
            no larger than MAX_AMOUNT.
    """
    decimal_amount = _parse_decimal(amount)
    with localcontext() as ctx:
        # Long fractional inputs must not be rounded before the half-up step.
        ctx.prec = max(ctx.prec, len(decimal_amount.as_tuple().digits) + 3)
        minor = int((decimal_amount * MINOR_UNITS_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if minor > MAX_MINOR_UNITS:
        raise InvalidAmountError(amount, f"exceeds the maximum amount {MAX_AMOUNT}")
    return minor


def to_decimal(minor_units: int) -> Decimal:
    """Convert integer minor units to a two-place Decimal.

    Raises:
        InvalidAmountError: If minor_units is not a non-negative integer no
            larger than MAX_MINOR_UNITS.
    """
    if isinstance(minor_units, bool) or not isinstance(minor_units, int):
        raise InvalidAmountError(minor_units, "minor units must be an integer")
    if minor_units < 0:
        raise InvalidAmountError(minor_units, "must be non-negative")
    if minor_units > MAX_MINOR_UNITS:
        raise InvalidAmountError(minor_units, f"exceeds the maximum of {MAX_MINOR_UNITS} minor units")
    return (Decimal(minor_units) / MINOR_UNITS_PER_MAJOR).quantize(TWO_PLACES)


def reconcile(entity: Any, fields: list[MonetaryField] | tuple[MonetaryField, ...]) -> None:
    """Bring both representations of every monetary field into agreement.

    Precedence is directional: a set minor-unit value always wins and the
    decimal is re-derived from it, overwriting any stale decimal. Only when
    the minor-unit value is unset is it derived from the decimal.

    Args:
        entity: Any object carrying the declared attributes.
        fields: The monetary fields to reconcile.
    """
    for money in fields:
        minor = getattr(entity, money.minor_attr, None)
        if minor is not None:
            setattr(entity, money.decimal_attr, to_decimal(minor))
            continue
        decimal_value = getattr(entity, money.decimal_attr, None)
        if decimal_value is not None:
            derived = to_minor_units(decimal_value)
            setattr(entity, money.minor_attr, derived)
            setattr(entity, money.decimal_attr, to_decimal(derived))


def _field(fields: list[MonetaryField] | tuple[MonetaryField, ...], name: str) -> MonetaryField:
    for money in fields:
        if money.name == name:
            return money
    raise ConfigurationError(f"'{name}' is not a declared monetary field", field=name)


def get_amount(
    entity: Any,
    fields: list[MonetaryField] | tuple[MonetaryField, ...],
    name: str,
) -> Decimal | None:
    """Read a money field, always from its authoritative minor-unit form."""
    money = _field(fields, name)
    minor = getattr(entity, money.minor_attr, None)
    if minor is None:
        decimal_value = getattr(entity, money.decimal_attr, None)
        return None if decimal_value is None else to_decimal(to_minor_units(decimal_value))
    return to_decimal(minor)


def set_amount(
    entity: Any,
    fields: list[MonetaryField] | tuple[MonetaryField, ...],
    name: str,
    value: Any,
) -> int:
    """Write a money field from a major-unit value.

    The minor-unit form is computed first and the decimal is derived from it,
    so ``set_amount(inv, fields, "fee", 150.005)`` stores ``15001`` and
    ``Decimal("150.01")``.

    Returns:
        The stored minor-unit value.
    """
    money = _field(fields, name)
    minor = to_minor_units(value)
    setattr(entity, money.minor_attr, minor)
    setattr(entity, money.decimal_attr, to_decimal(minor))
    return minor


def set_amount_from_minor(
    entity: Any,
    fields: list[MonetaryField] | tuple[MonetaryField, ...],
    name: str,
    minor_units: int,
) -> Decimal:
    """Write a money field from minor units and return the derived decimal."""
    money = _field(fields, name)
    decimal_value = to_decimal(minor_units)
    setattr(entity, money.minor_attr, minor_units)
    setattr(entity, money.decimal_attr, decimal_value)
    return decimal_value
