"""
Achievement-rate and donation math shared by personal and group POWs.

All rounding is half-up, so ``round_half_up(2.5) == 3`` where Python's
builtin ``round`` would give 2.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

MAX_ACHIEVEMENT_RATE = 100.0


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round ``value`` half away from zero at ``ndigits`` decimals."""
    quant = Decimal(1).scaleb(-ndigits)
    return float(Decimal(repr(value)).quantize(quant, rounding=ROUND_HALF_UP))


def calculate_achievement_rate(goal_seconds: int, actual_seconds: int) -> float:
    """
    Percentage of the goal achieved, one decimal, capped at 100.

    A non-positive goal yields 0 rather than dividing by zero.
    """
    if goal_seconds <= 0:
        return 0.0
    ratio = actual_seconds / goal_seconds
    rate = round_half_up(ratio * 1000) / 10
    return min(MAX_ACHIEVEMENT_RATE, rate)


def calculate_actual_sats(target_sats: int, achievement_rate: float) -> int:
    """Donation owed for ``target_sats`` scaled by ``achievement_rate`` percent."""
    return int(round_half_up(target_sats * achievement_rate / 100))

