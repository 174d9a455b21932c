"""Weekly Coach Rule Engine — fact → pattern → action.

Rule-based, no LLM: one fact line from the trailing 7-day counts, one
pattern label from a fixed decision table (first match wins), and one
next action taken from the user's own text with length sanitisation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from cadence.config.settings import COACH_ACTION_MAX_LEN, COACH_ACTION_SHORT_LEN
from cadence.engine.rhythm import executed_day_count

DEFAULT_ACTION = "do one action today"
ELLIPSIS = "…"

# Whole-input verbs that read as a nudge once prefixed with "today"
BARE_VERBS = frozenset({"do", "do it", "doing", "to do", "start", "finish"})


class CoachPattern:
    NO_EXECUTION = "no execution"
    LOW_FREQUENCY = "low frequency"
    LATE_WEEK_GAP = "late-week gap"
    STEADY = "steady"


@dataclass(frozen=True)
class WeeklyCoachResult:
    fact: str
    pattern: str
    action: str

    def to_dict(self) -> dict:
        return {"fact": self.fact, "pattern": self.pattern, "action": self.action}


def sanitize_action_text(raw: Optional[str]) -> str:
    """Trim, nudge bare verbs and cap the length of a free-text action."""
    s = (raw or "").strip()
    if not s:
        return ""
    if len(s) < COACH_ACTION_SHORT_LEN and s.lower() in BARE_VERBS:
        s = f"today {s}"
    if len(s) > COACH_ACTION_MAX_LEN:
        s = s[:COACH_ACTION_MAX_LEN - 1] + ELLIPSIS
    return s


def coach_pattern(day_counts: Sequence[int]) -> str:
    """Pattern label for seven daily counts, most recent day first."""
    counts = list(day_counts)
    executed = sum(1 for c in counts if c > 0)
    if executed == 0:
        return CoachPattern.NO_EXECUTION
    if executed <= 2:
        return CoachPattern.LOW_FREQUENCY

    recent3 = sum(counts[:3])
    older4 = sum(counts[3:7])
    gap = next((i for i, c in enumerate(counts) if c > 0), len(counts))
    if (recent3 == 0 and older4 > 0) or gap >= 3:
        return CoachPattern.LATE_WEEK_GAP
    return CoachPattern.STEADY


def build_weekly_coach(
    counts: Mapping[str, int],
    keys: Sequence[str],
    rule_text: str = "",
    fallback_text: str = "",
    keep_text: str = "",
) -> WeeklyCoachResult:
    """Coach card for a 7-day window.

    ``keys`` are the window's date keys, most recent first. The action is the
    first non-empty of rule text, fallback text and keep text, else a
    generic default; the result never has an empty field.
    """
    executed = executed_day_count(counts, keys)
    fact = f"executed {executed} of the last {len(keys)} days"
    pattern = coach_pattern([counts.get(k, 0) for k in keys])

    action = sanitize_action_text(rule_text) or sanitize_action_text(fallback_text)
    if not action:
        action = sanitize_action_text(keep_text)
    if not action:
        action = DEFAULT_ACTION
    return WeeklyCoachResult(fact=fact, pattern=pattern, action=action)
