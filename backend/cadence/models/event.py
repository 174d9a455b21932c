"""Goal-track completion event.

One event records that a goal-linked todo was completed on a given day.
The id is the composite ``(goal_track_id, todo_id, date_key)`` key, so
writing the same completion twice overwrites instead of duplicating.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional

import redis

EVENT_PREFIX = "goal_track_event:"
EVENT_ALL_KEY = "goal_track_event:all"
EVENT_BY_TRACK_PREFIX = "goal_track_event:by_track:"
EVENT_BY_TODO_PREFIX = "goal_track_event:by_todo:"


def build_event_id(goal_track_id: str, todo_id: str, date_key: str) -> str:
    """Deterministic event id; the idempotency key for every ledger write."""
    return f"{goal_track_id}_{todo_id}_{date_key}"


@dataclass
class GoalTrackEvent:
    goal_track_id: str
    todo_id: str
    date_key: str                   # YYYY-MM-DD, home timezone
    todo_text: str = ""             # snapshot at completion time
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    id: str = ""

    def __post_init__(self):
        self.id = build_event_id(self.goal_track_id, self.todo_id, self.date_key)

    @property
    def created_at_dt(self) -> datetime:
        try:
            dt = datetime.fromisoformat(self.created_at)
        except (ValueError, TypeError):
            return datetime.min.replace(tzinfo=timezone.utc)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> GoalTrackEvent:
        data = dict(data)
        data.pop("id", None)  # always recomputed from the triple
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def to_redis(self, r: redis.Redis) -> None:
        """Upsert the event hash and its index memberships atomically."""
        pipe = r.pipeline(transaction=True)
        pipe.hset(f"{EVENT_PREFIX}{self.id}", mapping=self.to_dict())
        pipe.sadd(EVENT_ALL_KEY, self.id)
        pipe.sadd(f"{EVENT_BY_TRACK_PREFIX}{self.goal_track_id}", self.id)
        pipe.sadd(f"{EVENT_BY_TODO_PREFIX}{self.todo_id}", self.id)
        pipe.execute()

    @classmethod
    def from_redis(cls, r: redis.Redis, event_id: str) -> Optional[GoalTrackEvent]:
        data = r.hgetall(f"{EVENT_PREFIX}{event_id}")
        if not data:
            return None
        decoded = {k.decode() if isinstance(k, bytes) else k:
                   v.decode() if isinstance(v, bytes) else v
                   for k, v in data.items()}
        return cls.from_dict(decoded)

    @classmethod
    def delete_from_redis(cls, r: redis.Redis, event_id: str) -> bool:
        """Remove the event and its index entries. Returns False if absent."""
        event = cls.from_redis(r, event_id)
        if event is None:
            return False
        pipe = r.pipeline(transaction=True)
        queue_event_delete(pipe, event)
        pipe.execute()
        return True


def queue_event_delete(pipe, event: GoalTrackEvent) -> None:
    """Queue the deletes for one event on an open pipeline."""
    pipe.delete(f"{EVENT_PREFIX}{event.id}")
    pipe.srem(EVENT_ALL_KEY, event.id)
    pipe.srem(f"{EVENT_BY_TRACK_PREFIX}{event.goal_track_id}", event.id)
    pipe.srem(f"{EVENT_BY_TODO_PREFIX}{event.todo_id}", event.id)
