# terminal/services/money.py

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")

CURRENCY_SYMBOL = "₦"


def money(v) -> Decimal:
    if v is None or v == "":
        return ZERO
    return Decimal(str(v)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def format_naira(amount) -> str:
    """
    Receipt/display formatting: thousands separators, kobo only when non-zero.

    format_naira(3000)      -> "₦3,000"
    format_naira("1500.50") -> "₦1,500.50"
    """
    value = money(amount)
    if value == value.to_integral_value():
        return f"{CURRENCY_SYMBOL}{value:,.0f}"
    return f"{CURRENCY_SYMBOL}{value:,.2f}"
