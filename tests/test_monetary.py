"""Tests for the monetary normalizer.

Covers major/minor conversion, half-up rounding of float inputs, rejection
of invalid amounts and the minor-wins precedence of reconcile().
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import pytest

from compliance_audit_core.errors import ConfigurationError, InvalidAmountError
from compliance_audit_core.monetary import (
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

FIELDS = (MonetaryField.named("fee"), MonetaryField.named("amount"))


@dataclass
class Charge:
    fee: Any = None
    fee_paise: int | None = None
    amount: Any = None
    amount_paise: int | None = None


class TestConversion:
    """Tests for to_minor_units() and to_decimal()."""

    def test_float_half_up_rounding(self) -> None:
        """150.005 rounds half-up to 15001 minor units, not down via binary float error."""
        assert to_minor_units(150.005) == 15001
        assert to_decimal(15001) == Decimal("150.01")

    def test_decimal_string_round_trip_is_exact(self) -> None:
        for text in ("0.00", "0.01", "1999.99", "123456789.10"):
            assert to_decimal(to_minor_units(text)) == Decimal(text)

    def test_integer_input_is_major_units(self) -> None:
        assert to_minor_units(5000) == 500000

    def test_decimal_input(self) -> None:
        assert to_minor_units(Decimal("10.125")) == 1013

    def test_to_decimal_has_two_places(self) -> None:
        assert str(to_decimal(100)) == "1.00"

    @pytest.mark.parametrize("value", [-1, "-0.01", "NaN", float("inf"), True, "abc", None, [1]])
    def test_invalid_major_amounts_raise(self, value: Any) -> None:
        with pytest.raises(InvalidAmountError):
            to_minor_units(value)

    @pytest.mark.parametrize("value", [-5, 1.5, "100", False])
    def test_invalid_minor_units_raise(self, value: Any) -> None:
        with pytest.raises(InvalidAmountError):
            to_decimal(value)

    def test_error_carries_offending_value(self) -> None:
        with pytest.raises(InvalidAmountError) as exc_info:
            to_minor_units("-3")
        assert exc_info.value.value == "-3"
        assert exc_info.value.code == "invalid_amount"

    def test_maximum_amount_converts_exactly(self) -> None:
        assert to_minor_units(MAX_AMOUNT) == MAX_MINOR_UNITS
        assert to_decimal(MAX_MINOR_UNITS) == Decimal("9999999999999999.99")

    @pytest.mark.parametrize(
        "value",
        [1e30, "1e30", Decimal("1E+30"), "12345678901234567890123456789", "9999999999999999.995"],
    )
    def test_amounts_above_maximum_raise(self, value: Any) -> None:
        with pytest.raises(InvalidAmountError) as exc_info:
            to_minor_units(value)
        assert "maximum" in exc_info.value.message

    @pytest.mark.parametrize("value", [MAX_MINOR_UNITS + 1, 10**30 + 1])
    def test_minor_units_above_maximum_raise(self, value: int) -> None:
        with pytest.raises(InvalidAmountError):
            to_decimal(value)

    def test_long_fraction_rounds_once(self) -> None:
        """Digits beyond the default context precision still reach the half-up step."""
        assert to_minor_units("0.0049999999999999999999999999999999") == 0
        assert to_minor_units("0.0050000000000000000000000000000001") == 1


class TestReconcile:
    """Tests for reconcile() precedence."""

    def test_minor_units_win_over_stale_decimal(self) -> None:
        charge = Charge(fee=Decimal("999.99"), fee_paise=15001)
        reconcile(charge, FIELDS)
        assert charge.fee == Decimal("150.01")
        assert charge.fee_paise == 15001

    def test_decimal_fills_missing_minor(self) -> None:
        charge = Charge(amount="2500.5")
        reconcile(charge, FIELDS)
        assert charge.amount_paise == 250050
        assert charge.amount == Decimal("2500.50")

    def test_unset_fields_stay_unset(self) -> None:
        charge = Charge()
        reconcile(charge, FIELDS)
        assert charge.fee is None
        assert charge.fee_paise is None

    def test_repeated_reconcile_does_not_drift(self) -> None:
        charge = Charge(fee=150.005)
        for _ in range(5):
            reconcile(charge, FIELDS)
        assert charge.fee_paise == 15001
        assert charge.fee == Decimal("150.01")


class TestAccessors:
    """Tests for get_amount() / set_amount() / set_amount_from_minor()."""

    def test_set_amount_stores_both_forms(self) -> None:
        charge = Charge()
        minor = set_amount(charge, FIELDS, "fee", 150.005)
        assert minor == 15001
        assert charge.fee_paise == 15001
        assert charge.fee == Decimal("150.01")

    def test_set_amount_from_minor(self) -> None:
        charge = Charge()
        assert set_amount_from_minor(charge, FIELDS, "amount", 99) == Decimal("0.99")
        assert charge.amount_paise == 99

    def test_get_amount_reads_minor_form(self) -> None:
        charge = Charge(fee=Decimal("1.00"), fee_paise=250)
        assert get_amount(charge, FIELDS, "fee") == Decimal("2.50")

    def test_get_amount_falls_back_to_decimal(self) -> None:
        charge = Charge(fee="7.255")
        assert get_amount(charge, FIELDS, "fee") == Decimal("7.26")

    def test_get_amount_unset_returns_none(self) -> None:
        assert get_amount(Charge(), FIELDS, "amount") is None

    def test_undeclared_field_is_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            get_amount(Charge(), FIELDS, "tax")

    def test_invalid_value_leaves_entity_untouched(self) -> None:
        charge = Charge(fee=Decimal("1.00"), fee_paise=100)
        with pytest.raises(InvalidAmountError):
            set_amount(charge, FIELDS, "fee", "-4")
        assert charge.fee_paise == 100
