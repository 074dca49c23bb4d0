# healthnet/core/money.py
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    """Coerce to a Decimal with exactly 2 fraction digits (half-up)."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Gateway amounts are sent in the minor currency unit (x100)."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount: int | None) -> Decimal | None:
    if amount is None:
        return None
    return to_money(Decimal(amount) / 100)


def format_money(amount: Decimal | None, symbol: str) -> str:
    return f"{symbol}{to_money(amount):,.2f}"
