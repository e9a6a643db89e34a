"""Group POW state machine and settlement math.

State progression: upcoming -> ongoing -> completed, or upcoming -> cancelled.
Nothing leaves ``completed`` or ``cancelled``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from citadel.pow.calculations import calculate_achievement_rate, calculate_actual_sats

UPCOMING = "upcoming"
ONGOING = "ongoing"
COMPLETED = "completed"
CANCELLED = "cancelled"

VALID_TRANSITIONS: dict[str, list[str]] = {
    UPCOMING: [ONGOING, CANCELLED],
    ONGOING: [COMPLETED],
    COMPLETED: [],
    CANCELLED: [],
}

TERMINAL_STATUSES = frozenset({COMPLETED, CANCELLED})

START_WINDOW = timedelta(minutes=15)


class GroupPowStateError(ValueError):
    """An action is not legal for the group POW's current status."""


class StartWindowError(GroupPowStateError):
    """Start attempted outside the window around ``planned_date``.

    ``can_start_at`` is set when the attempt was early.
    """

    def __init__(self, message: str, can_start_at: datetime | None = None, minutes_remaining: int | None = None) -> None:
        super().__init__(message)
        self.can_start_at = can_start_at
        self.minutes_remaining = minutes_remaining


def validate_transition(current_status: str, target_status: str) -> None:
    """Raise GroupPowStateError unless ``current -> target`` is legal."""
    if target_status in VALID_TRANSITIONS.get(current_status, []):
        return
    if current_status in TERMINAL_STATUSES:
        msg = "Group POW is already finished"
    elif current_status == ONGOING and target_status == CANCELLED:
        msg = "Cannot cancel an ongoing group POW"
    else:
        msg = f"Invalid transition: {current_status} -> {target_status}"
    raise GroupPowStateError(msg)


def check_start_window(planned_date: datetime, now: datetime, window: timedelta = START_WINDOW) -> None:
    """Allow a start only within ``[planned_date - window, planned_date + window]``."""
    opens_at = planned_date - window
    closes_at = planned_date + window
    if now < opens_at:
        minutes = math.ceil((opens_at - now).total_seconds() / 60)
        msg = f"Group POW can be started {minutes} minute(s) from now"
        raise StartWindowError(msg, can_start_at=opens_at, minutes_remaining=minutes)
    if now > closes_at:
        msg = "The start window for this group POW has passed"
        raise StartWindowError(msg)


@dataclass(frozen=True)
class Settlement:
    actual_duration: int
    achievement_rate: float
    payouts: dict[int, int]

    @property
    def total_sats(self) -> int:
        return sum(self.payouts.values())


def settle(started_at: datetime, now: datetime, planned_duration: int, pledges: dict[int, int]) -> Settlement:
    """Apply the group's achievement rate uniformly to every pledge.

    ``pledges`` maps participant id to pledged sats. Attendance does not
    scale the payout.
    """
    actual_duration = max(0, math.floor((now - started_at).total_seconds()))
    rate = calculate_achievement_rate(planned_duration, actual_duration)
    payouts = {pid: calculate_actual_sats(pledged, rate) for pid, pledged in pledges.items()}
    return Settlement(actual_duration=actual_duration, achievement_rate=rate, payouts=payouts)
