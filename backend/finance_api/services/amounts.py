from decimal import Decimal
from typing import Any

CENT = Decimal("0.01")


def to_storage(amount: Any) -> str:
    """Two-place decimal text, the representation kept in storage."""
    return format(Decimal(str(amount)).quantize(CENT), "f")


def to_number(value: Any) -> int | float:
    """Plain JSON number for an exact decimal: ``1500.00`` -> ``1500``, ``12.5`` -> ``12.5``."""
    amount = Decimal(str(value)).quantize(CENT)
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)
