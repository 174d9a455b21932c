"""Rhythm Aggregator — rolling execution signals for one goal track.

Turns a bag of ledger events into per-day counts over a trailing window of
date keys (most recent first) and derives the display signals from them:
executed days, total actions, gap since the last execution, dot intensity
and the "what if I finish today" projection.

Everything here is pure; callers pass in events they already fetched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Mapping, Optional, Sequence

from cadence.engine.dates import last_n_date_keys, today_key, week_end_key, week_start_key
from cadence.errors import InvalidInputError
from cadence.models.event import GoalTrackEvent

RHYTHM_WINDOW_DAYS = 7

# Dot palette
DOT_ACTIVE_COLOR = "#16a34a"
DOT_NEUTRAL_COLOR = "#d1d5db"
DOT_OPACITY_STEPS = {1: 0.4, 2: 0.6, 3: 0.8}
DOT_MAX_LEVEL = 4


@dataclass(frozen=True)
class LastExecuted:
    text: str
    is_warning: bool


@dataclass(frozen=True)
class DotStyle:
    level: int          # 0 (none) .. 4 (max)
    color: str
    opacity: float
    kind: str = "count"

    def to_dict(self) -> dict:
        return {"level": self.level, "color": self.color, "opacity": self.opacity, "kind": self.kind}


@dataclass(frozen=True)
class RhythmImpact:
    current_days: int
    predicted_days: int


@dataclass
class RhythmSummary:
    goal_track_id: str
    keys: list[str]
    counts: dict[str, int]
    executed_days: int
    total_actions: int
    recent_gap: int
    last_executed: LastExecuted
    impact: RhythmImpact
    dots: list[DotStyle] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "goal_track_id": self.goal_track_id,
            "keys": self.keys,
            "counts": self.counts,
            "executed_days": self.executed_days,
            "total_actions": self.total_actions,
            "recent_gap": self.recent_gap,
            "last_executed": {
                "text": self.last_executed.text,
                "is_warning": self.last_executed.is_warning,
            },
            "impact": {
                "current_days": self.impact.current_days,
                "predicted_days": self.impact.predicted_days,
            },
            "dots": [d.to_dict() for d in self.dots],
        }


# ── Counting ─────────────────────────────────────────────────────────────


def per_day_counts(
    events: Iterable[GoalTrackEvent],
    goal_track_id: str,
    keys: Sequence[str],
) -> dict[str, int]:
    """Event count per date key for one goal track.

    Every key in ``keys`` is present in the result, zero-filled; events on
    days outside the window or for other tracks are ignored.
    """
    counts = {k: 0 for k in keys}
    for event in events:
        if event.goal_track_id == goal_track_id and event.date_key in counts:
            counts[event.date_key] += 1
    return counts


def last_7_days_counts(
    events: Iterable[GoalTrackEvent],
    goal_track_id: str,
    now: Optional[datetime] = None,
) -> dict[str, int]:
    return per_day_counts(events, goal_track_id, last_n_date_keys(RHYTHM_WINDOW_DAYS, now))


def executed_day_count(counts: Mapping[str, int], keys: Sequence[str]) -> int:
    return sum(1 for k in keys if counts.get(k, 0) > 0)


def total_action_count(counts: Mapping[str, int], keys: Sequence[str]) -> int:
    return sum(counts.get(k, 0) for k in keys)


def recent_gap(counts: Mapping[str, int], keys: Sequence[str]) -> int:
    """Index of the most recent executed day; ``len(keys)`` if there is none."""
    for i, k in enumerate(keys):
        if counts.get(k, 0) > 0:
            return i
    return len(keys)


def last_executed_text(counts: Mapping[str, int], keys: Sequence[str]) -> LastExecuted:
    gap = recent_gap(counts, keys)
    if gap == 0:
        return LastExecuted("executed today", False)
    if gap == 1:
        return LastExecuted("executed yesterday", False)
    if gap == 2:
        return LastExecuted("2 days ago", False)
    return LastExecuted(f"{gap} days with no execution", True)


def dot_intensity(count: int) -> DotStyle:
    """Display style for a day's execution count.

    0 → neutral gray; 1..3 → stepped opacity; 4 or more → full intensity.
    """
    if count < 0:
        raise InvalidInputError(f"Execution count cannot be negative, got {count}")
    if count == 0:
        return DotStyle(level=0, color=DOT_NEUTRAL_COLOR, opacity=1.0)
    if count >= DOT_MAX_LEVEL:
        return DotStyle(level=DOT_MAX_LEVEL, color=DOT_ACTIVE_COLOR, opacity=1.0)
    return DotStyle(level=count, color=DOT_ACTIVE_COLOR, opacity=DOT_OPACITY_STEPS[count])


def rhythm_impact(counts: Mapping[str, int], keys: Sequence[str]) -> RhythmImpact:
    """Executed-day count now and if today's todo were completed right now.

    ``keys[0]`` is today. The projection only adds a day when today has no
    execution yet.
    """
    current = executed_day_count(counts, keys)
    today_count = counts.get(keys[0], 0) if keys else 0
    predicted = current + 1 if keys and today_count == 0 else current
    return RhythmImpact(current_days=current, predicted_days=predicted)


# ── Convenience views ────────────────────────────────────────────────────


def today_count(
    events: Iterable[GoalTrackEvent],
    goal_track_id: str,
    now: Optional[datetime] = None,
) -> int:
    key = today_key(now)
    return sum(1 for e in events if e.goal_track_id == goal_track_id and e.date_key == key)


def week_count(
    events: Iterable[GoalTrackEvent],
    goal_track_id: str,
    now: Optional[datetime] = None,
) -> int:
    """Executions in the current Monday–Sunday home week."""
    start, end = week_start_key(now), week_end_key(now)
    return sum(
        1 for e in events
        if e.goal_track_id == goal_track_id and start <= e.date_key <= end
    )


def recent_events(
    events: Iterable[GoalTrackEvent],
    goal_track_id: str,
    limit: int = 5,
) -> list[GoalTrackEvent]:
    """Newest ``limit`` events of a goal track by creation time."""
    matching = [e for e in events if e.goal_track_id == goal_track_id]
    matching.sort(key=lambda e: (e.created_at_dt, e.id), reverse=True)
    return matching[:max(0, limit)]


def summarize_rhythm(
    events: Iterable[GoalTrackEvent],
    goal_track_id: str,
    keys: Sequence[str],
) -> RhythmSummary:
    keys = list(keys)
    counts = per_day_counts(events, goal_track_id, keys)
    return RhythmSummary(
        goal_track_id=goal_track_id,
        keys=keys,
        counts=counts,
        executed_days=executed_day_count(counts, keys),
        total_actions=total_action_count(counts, keys),
        recent_gap=recent_gap(counts, keys),
        last_executed=last_executed_text(counts, keys),
        impact=rhythm_impact(counts, keys),
        dots=[dot_intensity(counts[k]) for k in keys],
    )
