"""Routine Streak State Machine.

Phases per routine and day:

    idle → in_progress → all_done → completed_today

Checking the last task only reaches ``all_done``; the streak is committed
by an explicit completion action. Transitions here are pure functions on
``Routine`` values; ``commit_completion`` and ``roll_over_day`` are the thin
Redis adapters around them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable, Optional

import redis

from cadence.config.settings import REDIS_URL, ROUTINE_STREAK_GRACE_DAYS
from cadence.engine.dates import days_between, is_date_key_before, month_key, parse_date_key
from cadence.models.routine import (
    ROUTINE_ALL_KEY,
    ROUTINE_PREFIX,
    Routine,
    RoutinePhase,
    RoutineTask,
)

logger = logging.getLogger(__name__)

GRACE_DAYS = ROUTINE_STREAK_GRACE_DAYS
ROLLOVER_MARKER_PREFIX = "routine:rollover:"

ALREADY_COMPLETED = "already_completed"
TASKS_INCOMPLETE = "tasks_incomplete"
NOT_FOUND = "not_found"


@dataclass
class CompletionOutcome:
    """Result of a completion attempt."""
    routine: Optional[Routine]
    committed: bool
    reason: str = ""


def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def monthly_success_rate(history: Iterable[str], today_key: str) -> int:
    """Percent of elapsed days this month with a completion, 0-100.

    The denominator is the day of month, so the rate is meaningful mid-month.
    Days after today are ignored.
    """
    today = parse_date_key(today_key)
    prefix = month_key(today_key)
    successes = {d for d in history if d.startswith(prefix) and d <= today_key}
    return round(100 * len(successes) / max(1, today.day))


def routine_phase(routine: Routine, today_key: str) -> RoutinePhase:
    if routine.last_completed_date == today_key:
        return RoutinePhase.COMPLETED_TODAY
    checked = sum(1 for t in routine.tasks if t.completed)
    if checked == 0:
        return RoutinePhase.IDLE
    if checked < len(routine.tasks):
        return RoutinePhase.IN_PROGRESS
    return RoutinePhase.ALL_DONE


def toggle_task(routine: Routine, task_id: str) -> Routine:
    """Flip one task's checkbox. Never touches the streak."""
    tasks = [
        RoutineTask(id=t.id, title=t.title, completed=not t.completed) if t.id == task_id else t
        for t in routine.tasks
    ]
    return replace(routine, tasks=tasks)


def next_streak(routine: Routine, today_key: str) -> int:
    """Streak value after a completion on ``today_key``.

    A gap of 1..GRACE_DAYS days since the last completion keeps the streak;
    any longer gap (or a first completion) starts over at 1.
    """
    if not routine.last_completed_date:
        return 1
    gap = days_between(routine.last_completed_date, today_key)
    if 0 < gap <= GRACE_DAYS:
        return routine.streak + 1
    return 1


def complete_routine(routine: Routine, today_key: str) -> CompletionOutcome:
    """Commit today's completion.

    The same-day guard runs before the transition rule, so a repeated
    commit on the same day is a no-op instead of a second increment.
    """
    if routine.last_completed_date == today_key:
        return CompletionOutcome(routine=routine, committed=False, reason=ALREADY_COMPLETED)
    if not routine.all_tasks_done:
        return CompletionOutcome(routine=routine, committed=False, reason=TASKS_INCOMPLETE)

    history = set(routine.completion_history) | {today_key}
    updated = replace(
        routine,
        streak=next_streak(routine, today_key),
        total_completed_days=routine.total_completed_days + 1,
        last_completed_date=today_key,
        completion_history=history,
        monthly_success_rate=monthly_success_rate(history, today_key),
    )
    return CompletionOutcome(routine=updated, committed=True)


def apply_daily_reset(routine: Routine, today_key: str) -> Routine:
    """Start a new day from idle: uncheck leftovers from an uncommitted day.

    Checkboxes stamped with ``today_key`` are left alone, so repeated calls
    within one day never undo today's progress.
    """
    tasks = routine.tasks
    stale = not routine.tasks_date_key or is_date_key_before(routine.tasks_date_key, today_key)
    if stale and routine.last_completed_date != today_key and any(t.completed for t in tasks):
        tasks = [RoutineTask(id=t.id, title=t.title, completed=False) for t in tasks]
    return replace(
        routine,
        tasks=tasks,
        tasks_date_key=today_key,
        monthly_success_rate=monthly_success_rate(routine.completion_history, today_key),
    )


# ── Persistence adapters ─────────────────────────────────────────────────


def commit_completion(
    routine_id: str,
    today_key: str,
    r: redis.Redis | None = None,
) -> CompletionOutcome:
    """Load, guard, transition and save inside one WATCH/MULTI transaction.

    Two racing commits for the same day collapse to one increment: the
    loser either sees ``last_completed_date == today`` or has its EXEC
    aborted and retries into the guard.
    """
    r = r or _get_redis()
    key = f"{ROUTINE_PREFIX}{routine_id}"
    outcome = CompletionOutcome(routine=None, committed=False, reason=NOT_FOUND)

    def _txn(pipe: redis.client.Pipeline) -> None:
        nonlocal outcome
        data = pipe.hgetall(key)
        if not data:
            outcome = CompletionOutcome(routine=None, committed=False, reason=NOT_FOUND)
            return
        routine = Routine.from_dict(data)
        outcome = complete_routine(routine, today_key)
        if outcome.committed:
            pipe.multi()
            pipe.hset(key, mapping=outcome.routine.to_dict())

    r.transaction(_txn, key)

    if outcome.committed:
        logger.info(
            "Routine %s completed on %s — streak=%d total=%d",
            routine_id, today_key, outcome.routine.streak, outcome.routine.total_completed_days,
        )
    else:
        logger.info("Routine %s completion skipped: %s", routine_id, outcome.reason)
    return outcome


def save_task_toggle(
    routine_id: str,
    task_id: str,
    today_key: str,
    r: redis.Redis | None = None,
) -> Optional[Routine]:
    r = r or _get_redis()
    routine = Routine.from_redis(r, routine_id)
    if routine is None:
        return None
    routine = toggle_task(apply_daily_reset(routine, today_key), task_id)
    routine.to_redis(r)
    return routine


def roll_over_day(today_key: str, r: redis.Redis | None = None) -> int:
    """Apply the daily reset to all stored routines, at most once per day.

    Returns the number of routines rewritten (0 if today already ran).
    """
    r = r or _get_redis()
    if not r.set(f"{ROLLOVER_MARKER_PREFIX}{today_key}", "1", nx=True, ex=2 * 24 * 3600):
        logger.debug("Routine rollover for %s already applied", today_key)
        return 0

    changed = 0
    for rid in r.smembers(ROUTINE_ALL_KEY):
        routine = Routine.from_redis(r, rid)
        if routine is None:
            continue
        reset = apply_daily_reset(routine, today_key)
        if reset != routine:
            reset.to_redis(r)
            changed += 1
    logger.info("Routine rollover for %s reset %d routine(s)", today_key, changed)
    return changed
