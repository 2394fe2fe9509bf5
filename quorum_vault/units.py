"""
Conversion between display amounts and ledger base units
"""

from decimal import Decimal, InvalidOperation
from typing import Union

BASE_UNITS_PER_COIN = 100_000_000  # 1 display unit = 10^8 base units
DISPLAY_DECIMALS = 8

_QUANTUM = Decimal(1).scaleb(-DISPLAY_DECIMALS)


def to_base_units(amount: Union[Decimal, str, int]) -> int:
    """Convert a display amount into integer base units"""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"Not a valid amount: {amount!r}")

    if not value.is_finite():
        raise ValueError(f"Not a valid amount: {amount!r}")
    if value < 0:
        raise ValueError(f"Amount must not be negative, got {amount}")

    scaled = value * BASE_UNITS_PER_COIN
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {DISPLAY_DECIMALS} decimal places")

    return int(scaled)


def to_display(base_units: int) -> Decimal:
    """Convert base units into a display amount"""
    return (Decimal(base_units) / BASE_UNITS_PER_COIN).quantize(_QUANTUM)


def parse_u64(value: Union[str, int]) -> int:
    """Ledger views encode u64 values as JSON strings"""
    return int(value)
