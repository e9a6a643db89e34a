"""Per-user running timer session kept in Redis.

The session survives page reloads and device switches until the user
submits the completion or resets. Stored as JSON under
``pow:timer:{user_id}``.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from citadel.pow.timer import TimerState

if TYPE_CHECKING:
    from redis.asyncio import Redis

SESSION_TTL_SECONDS = 7 * 24 * 3600


def _key(user_id: int) -> str:
    return f"pow:timer:{user_id}"


@dataclass(frozen=True)
class PowGoal:
    field: str
    goal_content: str
    goal_time: int
    target_sats: int
    mode: str


@dataclass(frozen=True)
class TimerSession:
    goal: PowGoal
    timer: TimerState

    def to_json(self) -> str:
        return json.dumps({"goal": asdict(self.goal), "timer": self.timer.to_dict()})

    @classmethod
    def from_json(cls, raw: str) -> TimerSession:
        data: dict[str, Any] = json.loads(raw)
        return cls(goal=PowGoal(**data["goal"]), timer=TimerState.from_dict(data["timer"]))


async def load_session(redis: Redis, user_id: int) -> TimerSession | None:
    raw = await redis.get(_key(user_id))
    if raw is None:
        return None
    return TimerSession.from_json(raw)


async def save_session(redis: Redis, user_id: int, session: TimerSession) -> None:
    await redis.set(_key(user_id), session.to_json(), ex=SESSION_TTL_SECONDS)


async def clear_session(redis: Redis, user_id: int) -> bool:
    return bool(await redis.delete(_key(user_id)))
