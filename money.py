from decimal import Decimal, InvalidOperation
from typing import Union


# $1,000,000,000.00; keeps sums well inside a signed 64-bit column
MAX_AMOUNT_CENTS = 100_000_000_000


def parse_amount(value: Union[str, int, float, Decimal]) -> int:
    """Parse a user supplied amount ("45.99", "$1,200.50", 25) into cents."""
    if isinstance(value, bool):
        raise ValueError("Invalid amount")
    if isinstance(value, (int, Decimal)):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    else:
        clean = value.strip().replace("$", "").replace(" ", "").replace(",", "")
        if not clean:
            raise ValueError("Amount is required")
        try:
            amount = Decimal(clean)
        except InvalidOperation as exc:
            raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    scaled = amount * 100
    if scaled != scaled.to_integral_value():
        raise ValueError("Amount cannot have more than two decimal places")
    return int(scaled)


def cents_to_amount(cents: int) -> float:
    return round(cents / 100, 2)


def format_currency(cents: int, include_cents: bool = True) -> str:
    sign = "-" if cents < 0 else ""
    if include_cents:
        return f"{sign}${abs(cents) / 100:,.2f}"
    return f"{sign}${abs(cents) / 100:,.0f}"
