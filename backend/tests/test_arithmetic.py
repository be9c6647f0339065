"""
Unit tests for balance arithmetic.
"""

from decimal import Decimal

import pytest

from backend.app.core.exceptions import ValidationFailedError
from backend.app.domain.ledger.arithmetic import (
    expense_total,
    gross_balance_delta,
    issuance_value,
    net_transaction_value,
    parse_decimal_or_zero,
    purchase_cost,
    round2,
    round3,
    settlement_value,
)


@pytest.mark.parametrize("raw, expected", [
    (None, Decimal("0")),
    ("", Decimal("0")),
    ("  ", Decimal("0")),
    ("abc", Decimal("0")),
    ("NaN", Decimal("0")),
    ("Infinity", Decimal("0")),
    ("12.5", Decimal("12.5")),
    (7, Decimal("7")),
    (0.1, Decimal("0.1")),
])
def test_parse_decimal_or_zero_lenient(raw, expected):
    assert parse_decimal_or_zero(raw) == expected


def test_parse_decimal_or_zero_negative_handling():
    assert parse_decimal_or_zero("-3") == Decimal("-3")
    assert parse_decimal_or_zero("-3", allow_negative=False) == Decimal("0")


def test_parse_decimal_or_zero_strict_rejects_bad_input():
    with pytest.raises(ValidationFailedError):
        parse_decimal_or_zero("abc", strict=True)
    with pytest.raises(ValidationFailedError):
        parse_decimal_or_zero("-1", allow_negative=False, strict=True)
    # Absent still means zero in strict mode
    assert parse_decimal_or_zero(None, strict=True) == Decimal("0")


def test_rounding_is_half_away_from_zero():
    assert round3("1.0005") == Decimal("1.001")
    assert round3("-1.0005") == Decimal("-1.001")
    assert round2("2.345") == Decimal("2.35")
    assert round3(0.1 + 0.2) == Decimal("0.300")


@pytest.mark.parametrize("raw", ["1.0005", "-1.0005", "2.3449", "0.1", 0.1 + 0.2, "123456.78951", 7])
def test_rounding_twice_changes_nothing(raw):
    assert round3(round3(raw)) == round3(raw)
    assert round2(round2(raw)) == round2(raw)


def test_stock_in_purchase_math():
    user_cost = purchase_cost(100, 2)
    assert user_cost == Decimal("2.000")
    assert gross_balance_delta(0, user_cost, 5) == Decimal("3.000")
    assert net_transaction_value(user_cost, 5) == Decimal("-3.000")


def test_purchase_cost_ignores_negative_inputs():
    assert purchase_cost(-100, 2) == Decimal("0.000")


def test_purchase_cost_with_zero_input_is_zero():
    assert purchase_cost(0, 2.5) == Decimal("0.000")
    assert purchase_cost(100, 0) == Decimal("0.000")
    assert purchase_cost(None, "") == Decimal("0.000")


def test_issuance_and_settlement_values():
    assert issuance_value([(2, "10"), (1, "2.5")]) == Decimal("22.500")
    assert settlement_value(1, 10) == Decimal("10.000")
    assert settlement_value(0, 10) == Decimal("0.000")


def test_expense_total_is_order_independent():
    amounts = ["10.10", "20.205", "0.1"]
    assert expense_total(amounts) == Decimal("30.41")
    assert expense_total(reversed(amounts)) == expense_total(amounts)
    assert expense_total([]) == Decimal("0.00")
