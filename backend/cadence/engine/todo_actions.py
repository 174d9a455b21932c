"""Todo flows that touch the Event Ledger or the rewrite oracle.

Completing a goal-linked todo writes its ledger event; un-completing or
deleting it removes the event again. Missed-reason tagging and the rewrite
offer keep a per-todo cached AI result under ``todo_ai:{todo_id}`` which is
purged whenever the reason changes or the rewrite is accepted/dismissed.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence

import redis

from cadence.config.settings import EVENT_DELETE_BATCH_LIMIT, REDIS_URL, REWRITE_CACHE_TTL
from cadence.engine.dates import parse_date_key, today_key
from cadence.engine.event_ledger import (
    delete_event,
    delete_events_by_goal_track,
    delete_events_by_todo,
    get_event,
    record_completion,
)
from cadence.engine.missed_reason import is_ai_eligible, reflection_questions
from cadence.errors import InvalidInputError
from cadence.models.event import build_event_id
from cadence.models.todo import (
    TODO_BY_TRACK_PREFIX,
    TODO_PREFIX,
    MissedReasonType,
    Todo,
    get_todos_for_day,
    normalize_missed_reason_type,
)
from cadence.services.rewrite_oracle import RewriteSuggestion, rewrite_todo

logger = logging.getLogger(__name__)

AI_CACHE_PREFIX = "todo_ai:"
REWRITE_FAILED_MESSAGE = "Couldn't get a suggestion. Please try again."

Oracle = Callable[[str, MissedReasonType, Optional[Sequence[str]]], Awaitable[Optional[RewriteSuggestion]]]


@dataclass
class RewriteState:
    """Cached rewrite outcome for one todo: a suggestion or an inline error."""
    todo_id: str
    eligible: bool
    suggestion: Optional[RewriteSuggestion] = None
    error: str = ""
    questions: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "todo_id": self.todo_id,
            "eligible": self.eligible,
            "suggestion": self.suggestion.to_dict() if self.suggestion else None,
            "error": self.error,
            "questions": list(self.questions),
        }


def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def _utcnow_iso(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


# ── CRUD ─────────────────────────────────────────────────────────────────


def create_todo(
    text: str,
    date_key: Optional[str] = None,
    due_at: str = "",
    goal_track_id: Optional[str] = None,
    now: Optional[datetime] = None,
    r: redis.Redis | None = None,
) -> Todo:
    r = r or _get_redis()
    text = (text or "").strip()
    if not text:
        raise InvalidInputError("Todo text cannot be empty")
    key = date_key or today_key(now)
    parse_date_key(key)
    todo = Todo(
        id=f"todo-{uuid.uuid4().hex[:12]}",
        text=text,
        date_key=key,
        due_at=due_at or "",
        goal_track_id=goal_track_id,
        created_at=_utcnow_iso(now),
    )
    todo.to_redis(r)
    logger.info("Created todo %s on %s (goal track %s)", todo.id, key, goal_track_id or "-")
    return todo


def toggle_todo(
    todo_id: str,
    r: redis.Redis | None = None,
    now: Optional[datetime] = None,
) -> Optional[Todo]:
    """Flip ``done``. Linked todos write or remove their ledger event."""
    r = r or _get_redis()
    todo = Todo.from_redis(r, todo_id)
    if todo is None:
        return None

    todo.done = not todo.done
    todo.completed_at = _utcnow_iso(now) if todo.done else ""
    todo.to_redis(r)

    if todo.goal_track_id:
        key = todo.date_key or today_key(now)
        if todo.done:
            record_completion(todo.goal_track_id, todo.id, todo.text, key, r)
        else:
            delete_event(build_event_id(todo.goal_track_id, todo.id, key), r)
    return todo


def delete_todo(todo_id: str, r: redis.Redis | None = None) -> bool:
    """Delete a todo, its ledger events and its cached AI result."""
    r = r or _get_redis()
    if not Todo.delete_from_redis(r, todo_id):
        return False
    removed = delete_events_by_todo(todo_id, r=r)
    r.delete(f"{AI_CACHE_PREFIX}{todo_id}")
    logger.info("Deleted todo %s (%d event(s))", todo_id, removed)
    return True


# ── Missed reason & rewrite ──────────────────────────────────────────────


def get_rewrite_state(todo_id: str, r: redis.Redis | None = None) -> Optional[RewriteState]:
    r = r or _get_redis()
    raw = r.get(f"{AI_CACHE_PREFIX}{todo_id}")
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Dropping unreadable AI cache entry for %s", todo_id)
        r.delete(f"{AI_CACHE_PREFIX}{todo_id}")
        return None
    suggestion = None
    if data.get("condition_message") and data.get("rewritten_todo"):
        suggestion = RewriteSuggestion(data["condition_message"], data["rewritten_todo"])
    return RewriteState(
        todo_id=todo_id,
        eligible=True,
        suggestion=suggestion,
        error=data.get("error", ""),
        questions=tuple(data.get("questions", [])),
    )


def _cache_rewrite_state(r: redis.Redis, state: RewriteState) -> None:
    payload = {"error": state.error, "questions": list(state.questions)}
    if state.suggestion:
        payload.update(state.suggestion.to_dict())
    r.set(f"{AI_CACHE_PREFIX}{state.todo_id}", json.dumps(payload), ex=REWRITE_CACHE_TTL)


def select_missed_reason(
    todo_id: str,
    reason,
    r: redis.Redis | None = None,
) -> Optional[Todo]:
    """Tag a todo with a missed reason and drop any stale AI result."""
    r = r or _get_redis()
    normalized = normalize_missed_reason_type(reason)
    if normalized is None:
        raise InvalidInputError(f"Unknown missed reason: {reason!r}")
    todo = Todo.from_redis(r, todo_id)
    if todo is None:
        return None
    todo.missed_reason_type = normalized
    todo.to_redis(r)
    r.delete(f"{AI_CACHE_PREFIX}{todo_id}")
    logger.info("Todo %s missed reason → %s", todo_id, normalized.value)
    return todo


async def request_rewrite(
    todo_id: str,
    oracle: Optional[Oracle] = None,
    now: Optional[datetime] = None,
    r: redis.Redis | None = None,
) -> Optional[RewriteState]:
    """Ask the oracle for a rewrite of an eligible todo.

    A cached suggestion is returned as-is. Ineligible todos get
    ``eligible=False`` without calling the oracle. An oracle failure is
    cached as an inline "try again" message for this todo only.
    """
    r = r or _get_redis()
    todo = Todo.from_redis(r, todo_id)
    if todo is None:
        return None
    if not is_ai_eligible(todo, now):
        return RewriteState(todo_id=todo_id, eligible=False)

    cached = get_rewrite_state(todo_id, r)
    if cached and cached.suggestion:
        return cached

    oracle = oracle or rewrite_todo
    questions = tuple(reflection_questions(todo))
    suggestion = await oracle(todo.text, todo.missed_reason_type, list(questions))
    if suggestion is None:
        state = RewriteState(todo_id, True, None, REWRITE_FAILED_MESSAGE, questions)
        logger.warning("Rewrite for todo %s failed", todo_id)
    else:
        state = RewriteState(todo_id, True, suggestion, "", questions)
        logger.info("Rewrite for todo %s ready", todo_id)
    _cache_rewrite_state(r, state)
    return state


def accept_rewrite(todo_id: str, new_text: str, r: redis.Redis | None = None) -> Optional[Todo]:
    """Replace the text; clears the missed reason, the due time and the AI cache."""
    r = r or _get_redis()
    text = (new_text or "").strip()
    if not text:
        raise InvalidInputError("Rewritten text cannot be empty")
    todo = Todo.from_redis(r, todo_id)
    if todo is None:
        return None
    todo.text = text
    todo.missed_reason_type = None
    todo.due_at = ""
    todo.to_redis(r)
    r.delete(f"{AI_CACHE_PREFIX}{todo_id}")
    logger.info("Todo %s rewrite accepted", todo_id)
    return todo


def dismiss_rewrite(todo_id: str, r: redis.Redis | None = None) -> bool:
    r = r or _get_redis()
    return bool(r.delete(f"{AI_CACHE_PREFIX}{todo_id}"))


# ── Goal-track maintenance ───────────────────────────────────────────────


def backfill_completion_events(date_key: str, r: redis.Redis | None = None) -> int:
    """Write missing ledger events for the day's done, linked todos.

    Returns how many events were created; existing events are left alone.
    """
    r = r or _get_redis()
    parse_date_key(date_key)
    created = 0
    for todo in get_todos_for_day(date_key, r):
        if not todo.done or not todo.goal_track_id:
            continue
        if get_event(build_event_id(todo.goal_track_id, todo.id, date_key), r):
            continue
        record_completion(todo.goal_track_id, todo.id, todo.text, date_key, r)
        created += 1
    if created:
        logger.info("Backfilled %d completion event(s) for %s", created, date_key)
    return created


def delete_goal_track(
    goal_track_id: str,
    batch_limit: int = EVENT_DELETE_BATCH_LIMIT,
    r: redis.Redis | None = None,
) -> dict:
    """Unlink every todo of a goal track in batches, then cascade its events."""
    r = r or _get_redis()
    if batch_limit < 1:
        raise InvalidInputError(f"batch_limit must be >= 1, got {batch_limit}")

    index_key = f"{TODO_BY_TRACK_PREFIX}{goal_track_id}"
    unlinked = 0
    while True:
        page = r.srandmember(index_key, batch_limit) or []
        if not page:
            break
        pipe = r.pipeline(transaction=True)
        for tid in page:
            if r.exists(f"{TODO_PREFIX}{tid}"):
                pipe.hset(f"{TODO_PREFIX}{tid}", "goal_track_id", "")
                unlinked += 1
            pipe.srem(index_key, tid)
        pipe.execute()
        if len(page) < batch_limit:
            break

    events = delete_events_by_goal_track(goal_track_id, batch_limit=batch_limit, r=r)
    logger.info(
        "Deleted goal track %s: %d todo(s) unlinked, %d event(s) removed",
        goal_track_id, unlinked, events,
    )
    return {"goal_track_id": goal_track_id, "todos_unlinked": unlinked, "events_deleted": events}
