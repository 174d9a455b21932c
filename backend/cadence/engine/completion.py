"""Completion-Ratio Aggregator.

Works from planned todos rather than ledger events: for each day, how many
of the todos linked to a goal track were done. A day with no linked todos
is "no plan", which is displayed differently from "planned, nothing done".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from cadence.engine.rhythm import DOT_ACTIVE_COLOR, DOT_NEUTRAL_COLOR, DotStyle
from cadence.errors import InvalidInputError
from cadence.models.todo import Todo

NO_PLAN_STYLE = DotStyle(level=0, color="transparent", opacity=1.0, kind="no_plan")

# (upper bound exclusive, level, opacity); partial ratios above the last
# bound are level 3, a full ratio is level 4
RATIO_STEPS = (
    (0.34, 1, 0.4),
    (0.67, 2, 0.6),
)


@dataclass(frozen=True)
class CompletionRatio:
    done: int
    total: int

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 0
        return round(100 * self.done / self.total)

    def to_dict(self) -> dict:
        return {"done": self.done, "total": self.total, "percent": self.percent}


def completion_ratios(
    todos_by_date_key: Mapping[str, Iterable[Todo]],
    goal_track_id: str,
    keys: Sequence[str],
) -> dict[str, CompletionRatio]:
    ratios = {}
    for key in keys:
        linked = [t for t in todos_by_date_key.get(key, ()) if t.goal_track_id == goal_track_id]
        ratios[key] = CompletionRatio(done=sum(1 for t in linked if t.done), total=len(linked))
    return ratios


def dot_style_from_ratio(done: int, total: int) -> DotStyle:
    """Display style for a done/total pair.

    ``total == 0`` is the no-plan style, never the 0% style.
    """
    if done < 0 or total < 0:
        raise InvalidInputError(f"Ratio parts cannot be negative: {done}/{total}")
    if done > total:
        raise InvalidInputError(f"Done count exceeds total: {done}/{total}")
    if total == 0:
        return NO_PLAN_STYLE
    if done == 0:
        return DotStyle(level=0, color=DOT_NEUTRAL_COLOR, opacity=1.0, kind="ratio")
    if done == total:
        return DotStyle(level=4, color=DOT_ACTIVE_COLOR, opacity=1.0, kind="ratio")
    ratio = done / total
    for bound, level, opacity in RATIO_STEPS:
        if ratio < bound:
            return DotStyle(level=level, color=DOT_ACTIVE_COLOR, opacity=opacity, kind="ratio")
    return DotStyle(level=3, color=DOT_ACTIVE_COLOR, opacity=0.8, kind="ratio")
