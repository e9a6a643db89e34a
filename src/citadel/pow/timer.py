"""
POW timer state machine.

``TimerState`` is an immutable value; every transition returns a new
state. Elapsed time is recomputed from absolute timestamps on each tick
instead of being incremented, so missed ticks do not drift the count.

Legal transitions::

    idle    -> running  (start)
    running -> paused   (pause)
    paused  -> running  (resume)
    running -> stopped  (stop)
    paused  -> stopped  (stop)
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Literal

from citadel.pow.calculations import calculate_achievement_rate, calculate_actual_sats

TimerStatus = Literal["idle", "running", "paused", "stopped"]


class TimerStateError(ValueError):
    """Raised when a transition is not legal from the current status."""

    def __init__(self, action: str, status: str) -> None:
        self.action = action
        self.status = status
        super().__init__(f"Cannot {action} a timer that is {status}")


@dataclass(frozen=True)
class TimerState:
    status: TimerStatus = "idle"
    started_at: datetime | None = None
    last_paused_at: datetime | None = None
    total_paused_seconds: int = 0
    elapsed_seconds: int = 0

    @property
    def is_running(self) -> bool:
        return self.status == "running"

    @property
    def is_paused(self) -> bool:
        return self.status == "paused"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("started_at", "last_paused_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TimerState:
        def _ts(value: str | None) -> datetime | None:
            if value is None:
                return None
            parsed = datetime.fromisoformat(value)
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

        status = data.get("status", "idle")
        if status not in ("idle", "running", "paused", "stopped"):
            msg = f"Unknown timer status: {status}"
            raise ValueError(msg)
        return cls(
            status=status,
            started_at=_ts(data.get("started_at")),
            last_paused_at=_ts(data.get("last_paused_at")),
            total_paused_seconds=int(data.get("total_paused_seconds", 0)),
            elapsed_seconds=int(data.get("elapsed_seconds", 0)),
        )


def _seconds_between(earlier: datetime, later: datetime) -> int:
    return math.floor((later - earlier).total_seconds())


def start(state: TimerState, now: datetime) -> TimerState:
    if state.status != "idle":
        raise TimerStateError("start", state.status)
    return TimerState(status="running", started_at=now)


def pause(state: TimerState, now: datetime) -> TimerState:
    if state.status != "running":
        raise TimerStateError("pause", state.status)
    ticked = tick(state, now)
    return replace(ticked, status="paused", last_paused_at=now)


def resume(state: TimerState, now: datetime) -> TimerState:
    if state.status != "paused" or state.last_paused_at is None:
        raise TimerStateError("resume", state.status)
    paused_for = max(0, _seconds_between(state.last_paused_at, now))
    return replace(
        state,
        status="running",
        last_paused_at=None,
        total_paused_seconds=state.total_paused_seconds + paused_for,
    )


def stop(state: TimerState, now: datetime) -> TimerState:
    """Freeze the timer. A paused timer keeps the elapsed value it had at pause."""
    if state.status not in ("running", "paused"):
        raise TimerStateError("stop", state.status)
    frozen = tick(state, now) if state.status == "running" else state
    return replace(frozen, status="stopped")


def tick(state: TimerState, now: datetime) -> TimerState:
    """Recompute ``elapsed_seconds``; a no-op unless running."""
    if state.status != "running" or state.started_at is None:
        return state
    elapsed = max(0, _seconds_between(state.started_at, now) - state.total_paused_seconds)
    if elapsed == state.elapsed_seconds:
        return state
    return replace(state, elapsed_seconds=elapsed)


def reset() -> TimerState:
    return TimerState()


@dataclass(frozen=True)
class CompletionDraft:
    """What a stopped timer would be recorded as."""

    actual_time: int
    achievement_rate: float
    actual_sats: int


def progress(state: TimerState, goal_time: int, target_sats: int) -> CompletionDraft:
    """Achievement rate and projected donation for the current elapsed time."""
    rate = calculate_achievement_rate(goal_time, state.elapsed_seconds)
    return CompletionDraft(
        actual_time=state.elapsed_seconds,
        achievement_rate=rate,
        actual_sats=calculate_actual_sats(target_sats, rate),
    )


def completion_draft(state: TimerState, goal_time: int, target_sats: int) -> CompletionDraft:
    if state.status != "stopped":
        raise TimerStateError("complete", state.status)
    return progress(state, goal_time, target_sats)
