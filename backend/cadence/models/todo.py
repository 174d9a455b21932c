"""Todo model with optional goal-track link and missed-reason tagging."""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import redis

TODO_PREFIX = "todo:"
TODO_BY_DAY_PREFIX = "todo:by_day:"
TODO_BY_TRACK_PREFIX = "todo:by_track:"


class MissedReasonType(str, Enum):
    COMPLETED_BUT_NOT_CHECKED = "COMPLETED_BUT_NOT_CHECKED"
    HARD_TO_START = "HARD_TO_START"
    NOT_ENOUGH_TIME = "NOT_ENOUGH_TIME"
    WANT_TO_REST = "WANT_TO_REST"


# Retired reason codes still present in stored data
LEGACY_REASON_CODES = {
    "FORGOT": MissedReasonType.COMPLETED_BUT_NOT_CHECKED,
    "TIME_MISMATCH": MissedReasonType.NOT_ENOUGH_TIME,
    "JUST_SKIP": MissedReasonType.WANT_TO_REST,
}

MISSED_REASON_LABELS = {
    MissedReasonType.COMPLETED_BUT_NOT_CHECKED: "I finished it but forgot to check it off",
    MissedReasonType.HARD_TO_START: "It was hard to get started",
    MissedReasonType.NOT_ENOUGH_TIME: "I didn't have enough time to finish",
    MissedReasonType.WANT_TO_REST: "I want to rest today",
}


def normalize_missed_reason_type(value: Any) -> Optional[MissedReasonType]:
    """Map stored values (current or legacy) to a reason; unknown → None."""
    if isinstance(value, MissedReasonType):
        return value
    if not isinstance(value, str) or not value:
        return None
    if value in LEGACY_REASON_CODES:
        return LEGACY_REASON_CODES[value]
    try:
        return MissedReasonType(value)
    except ValueError:
        return None


@dataclass
class Todo:
    id: str
    text: str
    date_key: str = ""                  # day list the todo belongs to
    done: bool = False
    due_at: str = ""                    # ISO 8601, empty when unset
    missed_reason_type: Optional[MissedReasonType] = None
    goal_track_id: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    completed_at: str = ""

    def __post_init__(self):
        self.missed_reason_type = normalize_missed_reason_type(self.missed_reason_type)
        self.goal_track_id = self.goal_track_id or None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["done"] = "1" if self.done else "0"
        d["missed_reason_type"] = self.missed_reason_type.value if self.missed_reason_type else ""
        d["goal_track_id"] = self.goal_track_id or ""
        return d

    @classmethod
    def from_dict(cls, data: dict) -> Todo:
        data = dict(data)
        done = data.get("done", False)
        if isinstance(done, str):
            data["done"] = done.lower() in ("1", "true")
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def to_redis(self, r: redis.Redis, previous_goal_track_id: Optional[str] = None) -> None:
        """Persist the todo hash and keep the day/track indexes in step."""
        pipe = r.pipeline(transaction=True)
        pipe.hset(f"{TODO_PREFIX}{self.id}", mapping=self.to_dict())
        if self.date_key:
            pipe.sadd(f"{TODO_BY_DAY_PREFIX}{self.date_key}", self.id)
        if previous_goal_track_id and previous_goal_track_id != self.goal_track_id:
            pipe.srem(f"{TODO_BY_TRACK_PREFIX}{previous_goal_track_id}", self.id)
        if self.goal_track_id:
            pipe.sadd(f"{TODO_BY_TRACK_PREFIX}{self.goal_track_id}", self.id)
        pipe.execute()

    @classmethod
    def from_redis(cls, r: redis.Redis, todo_id: str) -> Optional[Todo]:
        data = r.hgetall(f"{TODO_PREFIX}{todo_id}")
        if not data:
            return None
        decoded = {k.decode() if isinstance(k, bytes) else k:
                   v.decode() if isinstance(v, bytes) else v
                   for k, v in data.items()}
        return cls.from_dict(decoded)

    @classmethod
    def delete_from_redis(cls, r: redis.Redis, todo_id: str) -> bool:
        todo = cls.from_redis(r, todo_id)
        if todo is None:
            return False
        pipe = r.pipeline(transaction=True)
        pipe.delete(f"{TODO_PREFIX}{todo_id}")
        if todo.date_key:
            pipe.srem(f"{TODO_BY_DAY_PREFIX}{todo.date_key}", todo_id)
        if todo.goal_track_id:
            pipe.srem(f"{TODO_BY_TRACK_PREFIX}{todo.goal_track_id}", todo_id)
        pipe.execute()
        return True


def get_todos_for_day(date_key: str, r: redis.Redis) -> list[Todo]:
    todos = []
    for tid in r.smembers(f"{TODO_BY_DAY_PREFIX}{date_key}"):
        todo = Todo.from_redis(r, tid)
        if todo:
            todos.append(todo)
    todos.sort(key=lambda t: (t.created_at, t.id))
    return todos


def get_todos_by_date_keys(keys: list[str], r: redis.Redis) -> dict[str, list[Todo]]:
    return {key: get_todos_for_day(key, r) for key in keys}
