"""
Unit conversion between wei and human-readable ether / gwei.

Display helpers may round; parsing is exact and never goes through float.
"""

from decimal import Decimal, ROUND_DOWN
from typing import Union

WEI_PER_ETHER = Decimal("1000000000000000000")
WEI_PER_GWEI = Decimal("1000000000")


def ether_to_wei(value: Union[int, float, str, Decimal]) -> int:
    """
    Convert an ether amount to wei with exact precision.

    Floats are converted through their string form, so 0.1 becomes exactly
    100000000000000000 wei rather than 99999999999999999.

    Examples:
        >>> ether_to_wei("0.1")
        100000000000000000
        >>> ether_to_wei(1)
        1000000000000000000
    """
    if isinstance(value, Decimal):
        dec_value = value
    elif isinstance(value, str):
        dec_value = Decimal(value.strip())
    else:
        dec_value = Decimal(str(value))

    wei = dec_value * WEI_PER_ETHER

    if wei != wei.to_integral_value():
        raise ValueError(f"Ether value {value} results in fractional wei: {wei}")
    if wei < 0:
        raise ValueError(f"Ether value must not be negative: {value}")

    return int(wei)


def format_ether(wei: int, places: int = 6) -> str:
    """Render wei as ether, truncated to `places` decimals."""
    quantum = Decimal(1).scaleb(-places)
    return str((Decimal(wei) / WEI_PER_ETHER).quantize(quantum, rounding=ROUND_DOWN))


def format_gwei(wei: int, places: int = 2) -> str:
    """Render wei as gwei, truncated to `places` decimals."""
    quantum = Decimal(1).scaleb(-places)
    return str((Decimal(wei) / WEI_PER_GWEI).quantize(quantum, rounding=ROUND_DOWN))
