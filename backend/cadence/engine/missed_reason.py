"""Missed-Reason Classifier & AI-Eligibility Gate.

An overdue todo (not done, due time strictly in the past) can be tagged
with one reason from a closed set. Only two reasons unlock an automated
rewrite; the other two get a one-click "mark complete" or a plain
acknowledgement.

Reflection questions are picked from a fixed pool per reason with a seeded
shuffle, so the same todo and reason always show the same questions.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Sequence

from cadence.errors import InvalidInputError
from cadence.models.todo import (
    MISSED_REASON_LABELS,
    MissedReasonType,
    Todo,
    normalize_missed_reason_type,
)

__all__ = [
    "AI_ELIGIBLE_REASONS",
    "MISSED_REASON_LABELS",
    "Intervention",
    "MissedReasonType",
    "QUESTION_POOLS",
    "hash_seed",
    "intervention_for",
    "is_ai_eligible",
    "is_overdue",
    "normalize_missed_reason_type",
    "pick_stable_questions",
    "reflection_questions",
    "resolve_due_at",
]

AI_ELIGIBLE_REASONS = frozenset({
    MissedReasonType.HARD_TO_START,
    MissedReasonType.NOT_ENOUGH_TIME,
})

HARD_TO_START_QUESTION_POOL = (
    "If you only had to start, what would the very first action have been?",
    "What is the smallest step in this todo that needs no thinking at all?",
    "How would you rewrite it as something you can do within one minute?",
    "Which part of getting started feels the most tedious?",
    "If someone beside you said 'just do this one bit', what would it be?",
)

NOT_ENOUGH_TIME_QUESTION_POOL = (
    "Which part does not really need to happen today?",
    "If you only did half of it, where would be a good place to stop?",
    "If this todo had to fit in ten minutes, what would you keep?",
    "If it does not need to be perfect, how far is enough for today?",
)

QUESTION_POOLS = {
    MissedReasonType.HARD_TO_START: HARD_TO_START_QUESTION_POOL,
    MissedReasonType.NOT_ENOUGH_TIME: NOT_ENOUGH_TIME_QUESTION_POOL,
}

MIN_QUESTIONS = 2
MAX_QUESTIONS = 4

_UINT32 = 0xFFFFFFFF
_LCG_MULTIPLIER = 1664525
_LCG_INCREMENT = 1013904223


class Intervention(str, Enum):
    AI_REWRITE = "ai_rewrite"
    MARK_COMPLETE = "mark_complete"
    ACKNOWLEDGE = "acknowledge"
    NONE = "none"


# ── Overdue / eligibility ────────────────────────────────────────────────


def resolve_due_at(value) -> Optional[datetime]:
    """Aware datetime for a stored due time, or None when unset.

    Accepts datetimes and ISO-8601 strings (a trailing ``Z`` is UTC). Naive
    values are treated as UTC. Anything else raises InvalidInputError.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as exc:
            raise InvalidInputError(f"Unparseable due time: {value!r}") from exc
    else:
        raise InvalidInputError(f"Unsupported due time type: {type(value).__name__}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    return now if now.tzinfo else now.replace(tzinfo=timezone.utc)


def is_overdue(todo: Todo, now: Optional[datetime] = None) -> bool:
    if todo.done:
        return False
    due = resolve_due_at(todo.due_at)
    return due is not None and due < _now(now)


def is_ai_eligible(todo: Todo, now: Optional[datetime] = None) -> bool:
    return todo.missed_reason_type in AI_ELIGIBLE_REASONS and is_overdue(todo, now)


def intervention_for(todo: Todo, now: Optional[datetime] = None) -> Intervention:
    """Which follow-up the UI offers for a tagged, overdue todo."""
    if not is_overdue(todo, now) or todo.missed_reason_type is None:
        return Intervention.NONE
    if todo.missed_reason_type in AI_ELIGIBLE_REASONS:
        return Intervention.AI_REWRITE
    if todo.missed_reason_type == MissedReasonType.COMPLETED_BUT_NOT_CHECKED:
        return Intervention.MARK_COMPLETE
    return Intervention.ACKNOWLEDGE


# ── Stable question picker ───────────────────────────────────────────────


def hash_seed(text: str) -> int:
    """32-bit polynomial string hash (``h = h * 31 + ord(c)``)."""
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & _UINT32
    return h


def pick_stable_questions(
    seed: str,
    pool: Sequence[str],
    min_count: int = MIN_QUESTIONS,
    max_count: int = MAX_QUESTIONS,
) -> list[str]:
    """Pick ``min_count..max_count`` questions from ``pool``, stable per seed.

    The seed hash chooses the count and seeds an LCG-driven Fisher–Yates
    shuffle of the pool indices; the first ``count`` shuffled entries are
    returned in shuffled order.
    """
    if min_count < 0 or max_count < min_count:
        raise InvalidInputError(f"Invalid question range {min_count}..{max_count}")
    if len(pool) <= min_count:
        return list(pool)

    h = hash_seed(seed)
    count = h % (max_count - min_count + 1) + min_count
    indices = list(range(len(pool)))
    state = h or 1
    for i in range(len(indices) - 1, 0, -1):
        state = (state * _LCG_MULTIPLIER + _LCG_INCREMENT) & _UINT32
        j = state % (i + 1)
        indices[i], indices[j] = indices[j], indices[i]
    return [pool[i] for i in indices[:min(count, len(pool))]]


def reflection_questions(todo: Todo) -> list[str]:
    """Questions shown next to the rewrite offer; empty for other reasons."""
    reason = todo.missed_reason_type
    pool = QUESTION_POOLS.get(reason) if reason else None
    if not pool:
        return []
    return pick_stable_questions(f"{todo.id}-{reason.value}", pool)
