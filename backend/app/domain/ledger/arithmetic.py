"""
Balance arithmetic (pure functions).

Every gram quantity is a Decimal rounded half away from zero to three
fractional digits, so repeated aggregation never drifts.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Tuple

from backend.app.core.exceptions import ValidationFailedError

ZERO = Decimal("0")
GRAMS = Decimal("0.001")
CURRENCY = Decimal("0.01")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a number")
    if isinstance(value, float):
        # repr gives the shortest round-tripping form: 0.1 -> "0.1"
        return Decimal(repr(value))
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        return Decimal(value.strip())
    raise TypeError(f"unsupported numeric type {type(value).__name__}")


def parse_decimal_or_zero(value: Any, allow_negative: bool = True, strict: bool = False,
                          field: str = "value") -> Decimal:
    """
    Parse user input into a Decimal.

    Absent, blank, malformed, NaN and infinite input becomes 0. Negative input
    becomes 0 when allow_negative is False. In strict mode those cases raise
    ValidationFailedError instead (None and blank still mean 0).
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return ZERO

    try:
        parsed = _to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        if strict:
            raise ValidationFailedError(f"{field} must be a number", details={"field": field, "value": str(value)})
        return ZERO

    if not parsed.is_finite():
        if strict:
            raise ValidationFailedError(f"{field} must be a finite number", details={"field": field})
        return ZERO

    if parsed < 0 and not allow_negative:
        if strict:
            raise ValidationFailedError(f"{field} cannot be negative", details={"field": field})
        return ZERO

    return parsed


def round3(value: Any) -> Decimal:
    """Round half away from zero to 3 fractional digits (grams)."""
    return parse_decimal_or_zero(value).quantize(GRAMS, rounding=ROUND_HALF_UP)


def round2(value: Any) -> Decimal:
    """Round half away from zero to 2 fractional digits (currency display)."""
    return parse_decimal_or_zero(value).quantize(CURRENCY, rounding=ROUND_HALF_UP)


def purchase_cost(total_gram_purchase: Any, sri_bill_percent: Any) -> Decimal:
    """round3(totalGramPurchase * sriBillPercent / 100)."""
    grams = parse_decimal_or_zero(total_gram_purchase, allow_negative=False)
    percent = parse_decimal_or_zero(sri_bill_percent, allow_negative=False)
    return round3(grams * percent / 100)


def gross_balance_delta(current_balance: Any, user_purchase_cost: Any, dealer_purchase_cost: Any) -> Decimal:
    """
    round3(current - userPurchaseCost + dealerPurchaseCost).

    Despite the name this is the new gross balance; positive means the
    counterparty owes the shop.
    """
    return round3(
        parse_decimal_or_zero(current_balance)
        - parse_decimal_or_zero(user_purchase_cost)
        + parse_decimal_or_zero(dealer_purchase_cost)
    )


def net_transaction_value(user_purchase_cost: Any, dealer_purchase_cost: Any) -> Decimal:
    return round3(parse_decimal_or_zero(user_purchase_cost) - parse_decimal_or_zero(dealer_purchase_cost))


def settlement_value(returned_qty: Any, gross_weight_per_unit: Any) -> Decimal:
    """round3(returnedQty * grossWeightPerUnit), used when no manual value is given."""
    qty = parse_decimal_or_zero(returned_qty, allow_negative=False)
    weight = parse_decimal_or_zero(gross_weight_per_unit, allow_negative=False)
    return round3(qty * weight)


def issuance_value(items: Iterable[Tuple[Any, Any]]) -> Decimal:
    """Total grams issued for (issued_qty, gross_weight) pairs."""
    total = ZERO
    for qty, weight in items:
        total += parse_decimal_or_zero(qty, allow_negative=False) * parse_decimal_or_zero(weight, allow_negative=False)
    return round3(total)


def expense_total(amounts: Iterable[Any]) -> Decimal:
    """Sum of expense amounts, rounded for currency display."""
    return round2(sum((parse_decimal_or_zero(a) for a in amounts), ZERO))
