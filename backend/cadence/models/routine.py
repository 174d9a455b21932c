"""Routine model: a daily checklist with streak bookkeeping.

Streak fields only move through ``cadence.engine.routine_streak``; this
module owns the shape, read-time normalisation of older stored records,
and Redis persistence.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import redis

ROUTINE_PREFIX = "routine:"
ROUTINE_ALL_KEY = "routine:all"


class RoutinePhase(str, Enum):
    IDLE = "idle"                        # nothing checked today
    IN_PROGRESS = "in_progress"          # some tasks checked
    ALL_DONE = "all_done"                # every task checked, not committed
    COMPLETED_TODAY = "completed_today"  # explicit completion taken today


@dataclass
class RoutineTask:
    id: str
    title: str
    completed: bool = False

    def to_dict(self) -> dict:
        return {"id": self.id, "title": self.title, "completed": self.completed}


@dataclass
class Routine:
    id: str
    title: str
    tasks: list[RoutineTask] = field(default_factory=list)
    streak: int = 0
    total_completed_days: int = 0
    monthly_success_rate: int = 0
    last_completed_date: str = ""       # YYYY-MM-DD, empty if never completed
    completion_history: set[str] = field(default_factory=set)
    tasks_date_key: str = ""            # day the task checkboxes belong to

    @property
    def all_tasks_done(self) -> bool:
        return bool(self.tasks) and all(t.completed for t in self.tasks)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "tasks": json.dumps([t.to_dict() for t in self.tasks]),
            "streak": int(self.streak),
            "total_completed_days": int(self.total_completed_days),
            "monthly_success_rate": int(self.monthly_success_rate),
            "last_completed_date": self.last_completed_date,
            "completion_history": json.dumps(sorted(self.completion_history)),
            "tasks_date_key": self.tasks_date_key,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Routine:
        data = dict(data)
        for json_field in ("tasks", "completion_history", "completionHistory"):
            if isinstance(data.get(json_field), str):
                data[json_field] = json.loads(data[json_field])
        return normalize_routine(data)

    def to_redis(self, r: redis.Redis) -> None:
        pipe = r.pipeline(transaction=True)
        pipe.hset(f"{ROUTINE_PREFIX}{self.id}", mapping=self.to_dict())
        pipe.sadd(ROUTINE_ALL_KEY, self.id)
        pipe.execute()

    @classmethod
    def from_redis(cls, r: redis.Redis, routine_id: str) -> Optional[Routine]:
        data = r.hgetall(f"{ROUTINE_PREFIX}{routine_id}")
        if not data:
            return None
        decoded = {k.decode() if isinstance(k, bytes) else k:
                   v.decode() if isinstance(v, bytes) else v
                   for k, v in data.items()}
        return cls.from_dict(decoded)


def _new_id(kind: str) -> str:
    return f"{kind}-{uuid.uuid4().hex[:8]}"


def normalize_routine_task(raw: Any) -> Optional[RoutineTask]:
    """Accept a task dict or a bare title string; drop anything without a title."""
    if isinstance(raw, RoutineTask):
        return raw
    if isinstance(raw, str):
        title = raw.strip()
        return RoutineTask(id=_new_id("task"), title=title) if title else None
    if not isinstance(raw, dict):
        return None
    title = raw.get("title")
    if not isinstance(title, str):
        title = raw.get("text") if isinstance(raw.get("text"), str) else ""
    title = title.strip()
    if not title:
        return None
    task_id = raw.get("id") if isinstance(raw.get("id"), str) and raw.get("id") else _new_id("task")
    return RoutineTask(id=task_id, title=title, completed=bool(raw.get("completed", False)))


def _text_or_empty(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _non_negative_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number >= 0 else default


def normalize_routine(raw: dict) -> Routine:
    """Build a Routine from a stored record, tolerating older field names.

    Older records used camelCase keys, ``text`` instead of ``title`` and
    plain strings for tasks.
    """
    def pick(snake: str, camel: str, default: Any = None) -> Any:
        if snake in raw:
            return raw[snake]
        return raw.get(camel, default)

    history_raw = pick("completion_history", "completionHistory", []) or []
    if not isinstance(history_raw, (list, set, tuple)):
        history_raw = []
    history = {d for d in history_raw if isinstance(d, str) and d}

    title = raw.get("title")
    if not isinstance(title, str) or not title.strip():
        text = raw.get("text")
        title = text.strip() if isinstance(text, str) and text.strip() else "Routine"

    tasks = [t for t in (normalize_routine_task(t) for t in (raw.get("tasks") or [])) if t]

    last = pick("last_completed_date", "lastCompletedDate", "")
    return Routine(
        id=raw.get("id") or _new_id("routine"),
        title=title,
        tasks=tasks,
        streak=_non_negative_int(raw.get("streak"), 0),
        total_completed_days=_non_negative_int(
            pick("total_completed_days", "totalCompletedDays"), len(history)
        ),
        monthly_success_rate=_non_negative_int(
            pick("monthly_success_rate", "monthlySuccessRate"), 0
        ),
        last_completed_date=last if isinstance(last, str) else "",
        completion_history=history,
        tasks_date_key=_text_or_empty(pick("tasks_date_key", "tasksDateKey", "")),
    )


def get_all_routines(r: redis.Redis) -> list[Routine]:
    routines = []
    for rid in r.smembers(ROUTINE_ALL_KEY):
        routine = Routine.from_redis(r, rid)
        if routine:
            routines.append(routine)
    routines.sort(key=lambda x: x.id)
    return routines
