"""Event Ledger — idempotent storage of goal-track completion events.

Writes are upserts keyed by ``build_event_id``; retried or duplicated
"mark complete" actions therefore land on the same record. Cascade
deletion runs in bounded batches and loops until a page comes back
empty or short, so it can be re-invoked after a partial failure.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

import redis

from cadence.config.settings import EVENT_DELETE_BATCH_LIMIT, REDIS_URL
from cadence.models.event import (
    EVENT_ALL_KEY,
    EVENT_BY_TODO_PREFIX,
    EVENT_BY_TRACK_PREFIX,
    GoalTrackEvent,
    build_event_id,
    queue_event_delete,
)

logger = logging.getLogger(__name__)

__all__ = [
    "build_event_id",
    "upsert_event",
    "record_completion",
    "delete_event",
    "get_event",
    "get_events_for_goal_track",
    "get_events_for_todo",
    "get_all_events",
    "delete_events_by_goal_track",
    "delete_events_by_todo",
]


def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def upsert_event(event: GoalTrackEvent, r: redis.Redis | None = None) -> GoalTrackEvent:
    """Store an event by its deterministic id (insert or overwrite)."""
    r = r or _get_redis()
    event.to_redis(r)
    logger.info("Ledger upsert %s", event.id)
    return event


def record_completion(
    goal_track_id: str,
    todo_id: str,
    todo_text: str,
    date_key: str,
    r: redis.Redis | None = None,
) -> GoalTrackEvent:
    """Record that ``todo_id`` was completed for ``goal_track_id`` on ``date_key``."""
    event = GoalTrackEvent(
        goal_track_id=goal_track_id,
        todo_id=todo_id,
        date_key=date_key,
        todo_text=todo_text,
        created_at=datetime.now(timezone.utc).isoformat(),
    )
    return upsert_event(event, r)


def delete_event(event_id: str, r: redis.Redis | None = None) -> bool:
    """Delete by id. Missing ids are a no-op and return False."""
    r = r or _get_redis()
    deleted = GoalTrackEvent.delete_from_redis(r, event_id)
    if deleted:
        logger.info("Ledger delete %s", event_id)
    return deleted


def get_event(event_id: str, r: redis.Redis | None = None) -> Optional[GoalTrackEvent]:
    r = r or _get_redis()
    return GoalTrackEvent.from_redis(r, event_id)


def _load_events(r: redis.Redis, index_key: str) -> list[GoalTrackEvent]:
    events = []
    for eid in r.smembers(index_key):
        event = GoalTrackEvent.from_redis(r, eid)
        if event:
            events.append(event)
    events.sort(key=lambda e: (e.date_key, e.id))
    return events


def get_events_for_goal_track(goal_track_id: str, r: redis.Redis | None = None) -> list[GoalTrackEvent]:
    r = r or _get_redis()
    return _load_events(r, f"{EVENT_BY_TRACK_PREFIX}{goal_track_id}")


def get_events_for_todo(todo_id: str, r: redis.Redis | None = None) -> list[GoalTrackEvent]:
    r = r or _get_redis()
    return _load_events(r, f"{EVENT_BY_TODO_PREFIX}{todo_id}")


def get_all_events(r: redis.Redis | None = None) -> list[GoalTrackEvent]:
    r = r or _get_redis()
    return _load_events(r, EVENT_ALL_KEY)


def _delete_matching(r: redis.Redis, index_key: str, batch_limit: int) -> int:
    """Delete every event listed under ``index_key``, one page per commit.

    Each page holds at most ``batch_limit`` ids and is committed in a single
    transactional pipeline. Stops when a page is empty or shorter than the
    limit.
    """
    if batch_limit < 1:
        raise ValueError(f"batch_limit must be >= 1, got {batch_limit}")

    total = 0
    rounds = 0
    while True:
        page = r.srandmember(index_key, batch_limit) or []
        if not page:
            break
        pipe = r.pipeline(transaction=True)
        for eid in page:
            event = GoalTrackEvent.from_redis(r, eid)
            if event is None:
                # Index entry without a record; drop the dangling reference.
                pipe.srem(index_key, eid)
                pipe.srem(EVENT_ALL_KEY, eid)
                continue
            queue_event_delete(pipe, event)
            total += 1
        pipe.execute()
        rounds += 1
        if len(page) < batch_limit:
            break

    logger.info("Cascade delete on %s removed %d events in %d batch(es)", index_key, total, rounds)
    return total


def delete_events_by_goal_track(
    goal_track_id: str,
    batch_limit: int = EVENT_DELETE_BATCH_LIMIT,
    r: redis.Redis | None = None,
) -> int:
    """Delete all events of a goal track. Returns the number removed."""
    r = r or _get_redis()
    return _delete_matching(r, f"{EVENT_BY_TRACK_PREFIX}{goal_track_id}", batch_limit)


def delete_events_by_todo(
    todo_id: str,
    batch_limit: int = EVENT_DELETE_BATCH_LIMIT,
    r: redis.Redis | None = None,
) -> int:
    """Delete all events of a todo (any goal track, any day)."""
    r = r or _get_redis()
    return _delete_matching(r, f"{EVENT_BY_TODO_PREFIX}{todo_id}", batch_limit)
