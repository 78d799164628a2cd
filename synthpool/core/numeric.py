"""Decimal helpers shared by the engine."""

from decimal import Decimal
from typing import Optional, Union

from .constants import ABSOLUTE_TOLERANCE, RELATIVE_TOLERANCE

Number = Union[Decimal, int, str, float]


def as_decimal(value: Number) -> Decimal:
    """Coerce a numeric input to Decimal without binary float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def optional_decimal(value: Optional[str]) -> Optional[Decimal]:
    """Parse an optional serialized Decimal."""
    if value is None:
        return None
    return Decimal(value)


def approx_equal(
    a: Decimal,
    b: Decimal,
    abs_tol: Decimal = ABSOLUTE_TOLERANCE,
    rel_tol: Decimal = RELATIVE_TOLERANCE,
) -> bool:
    """
    Compare two Decimals within rounding tolerance.

    |a - b| <= max(abs_tol, rel_tol * max(|a|, |b|))
    """
    diff = abs(a - b)
    scale = max(abs(a), abs(b))
    return diff <= max(abs_tol, rel_tol * scale)
