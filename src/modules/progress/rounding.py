"""Percentage rounding shared by the aggregators."""

from decimal import ROUND_HALF_UP, Decimal

from src.core.config import Constants


def round_half_up(value: float | Decimal) -> int:
    """Round to the nearest integer, ties away from zero (2.5 -> 3)."""
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def clamp_percentage(value: int) -> int:
    """Keep a percentage within 0..100."""
    return max(Constants.PROGRESS_MIN, min(Constants.PROGRESS_MAX, value))


def percentage(part: float, whole: float) -> int:
    """round_half_up(100 * part / whole), or 0 when whole is not positive."""
    if whole <= 0:
        return 0
    return clamp_percentage(round_half_up(Decimal(str(part)) * 100 / Decimal(str(whole))))
