"""Weekly review of one goal track.

One record per ``(goal_track_id, week_start_key)``; the id is that pair, so
saving the same week again updates instead of duplicating. Older stored
reviews used a ``rhythm`` field and free-text ``wobbleMoment`` /
``nextWeekOneChange`` fields; ``normalize_review`` migrates them on read.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import redis

from cadence.errors import InvalidInputError
from cadence.models.todo import MissedReasonType, normalize_missed_reason_type

REVIEW_PREFIX = "weekly_review:"
REVIEW_BY_TRACK_PREFIX = "weekly_review:by_track:"


class WeeklyStatus(str, Enum):
    STEADY = "STEADY"
    SPORADIC = "SPORADIC"
    STOPPED = "STOPPED"


LEGACY_RHYTHM_TO_STATUS = {
    "steady": WeeklyStatus.STEADY,
    "sporadic": WeeklyStatus.SPORADIC,
    "stopped": WeeklyStatus.STOPPED,
}

OUTCOME_MODES = ("metric", "sense", "skip")
SENSES = ("closer", "same", "farther")


def build_review_id(goal_track_id: str, week_start_key: str) -> str:
    return f"{goal_track_id}_{week_start_key}"


@dataclass
class WeeklyRule:
    text: str
    weekdays: list[int] = field(default_factory=list)   # 0=Mon … 6=Sun

    def to_dict(self) -> dict:
        return {"text": self.text, "weekdays": list(self.weekdays)}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_metric_value(value: Any) -> Optional[float]:
    """Numeric metric or None. Booleans and non-numeric text are rejected."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InvalidInputError(f"Metric value must be numeric, got {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError as exc:
            raise InvalidInputError(f"Metric value must be numeric, got {value!r}") from exc
    raise InvalidInputError(f"Metric value must be numeric, got {type(value).__name__}")


@dataclass
class GoalTrackWeeklyReview:
    goal_track_id: str
    week_start_key: str
    status: WeeklyStatus = WeeklyStatus.STEADY
    block_reason: Optional[MissedReasonType] = None
    block_note: str = ""
    next_week_rule_text: str = ""
    next_week_rules: list[WeeklyRule] = field(default_factory=list)
    planned_weekdays: list[int] = field(default_factory=list)
    outcome_mode: str = ""
    metric_label: str = ""
    metric_value: Optional[float] = None
    metric_unit: str = ""
    sense: str = ""
    outcome_note: str = ""
    coach_fact: str = ""
    coach_pattern: str = ""
    coach_action: str = ""
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    id: str = ""

    def __post_init__(self):
        self.id = build_review_id(self.goal_track_id, self.week_start_key)
        self.metric_value = parse_metric_value(self.metric_value)
        if not self.next_week_rule_text and self.next_week_rules:
            self.next_week_rule_text = self.next_week_rules[0].text

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "goal_track_id": self.goal_track_id,
            "week_start_key": self.week_start_key,
            "status": self.status.value,
            "block_reason": self.block_reason.value if self.block_reason else "",
            "block_note": self.block_note,
            "next_week_rule_text": self.next_week_rule_text,
            "next_week_rules": json.dumps([r.to_dict() for r in self.next_week_rules]),
            "planned_weekdays": json.dumps(self.planned_weekdays),
            "outcome_mode": self.outcome_mode,
            "metric_label": self.metric_label,
            "metric_value": "" if self.metric_value is None else repr(self.metric_value),
            "metric_unit": self.metric_unit,
            "sense": self.sense,
            "outcome_note": self.outcome_note,
            "coach_fact": self.coach_fact,
            "coach_pattern": self.coach_pattern,
            "coach_action": self.coach_action,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def to_json(self) -> dict:
        """API shape: lists and numbers instead of the flattened hash fields."""
        d = self.to_dict()
        d["next_week_rules"] = [r.to_dict() for r in self.next_week_rules]
        d["planned_weekdays"] = list(self.planned_weekdays)
        d["metric_value"] = self.metric_value
        d["block_reason"] = self.block_reason.value if self.block_reason else None
        return d

    @classmethod
    def from_dict(cls, data: dict) -> GoalTrackWeeklyReview:
        data = dict(data)
        for json_field in ("next_week_rules", "planned_weekdays"):
            if isinstance(data.get(json_field), str):
                data[json_field] = json.loads(data[json_field] or "[]")
        return normalize_review(data)

    def to_redis(self, r: redis.Redis) -> None:
        pipe = r.pipeline(transaction=True)
        pipe.hset(f"{REVIEW_PREFIX}{self.id}", mapping=self.to_dict())
        pipe.sadd(f"{REVIEW_BY_TRACK_PREFIX}{self.goal_track_id}", self.id)
        pipe.execute()

    @classmethod
    def from_redis(cls, r: redis.Redis, review_id: str) -> Optional[GoalTrackWeeklyReview]:
        data = r.hgetall(f"{REVIEW_PREFIX}{review_id}")
        if not data:
            return None
        decoded = {k.decode() if isinstance(k, bytes) else k:
                   v.decode() if isinstance(v, bytes) else v
                   for k, v in data.items()}
        return cls.from_dict(decoded)


def _weekdays(raw: Any) -> list[int]:
    if not isinstance(raw, list):
        return []
    return [d for d in raw if isinstance(d, int) and not isinstance(d, bool) and 0 <= d <= 6]


def normalize_rules(raw: Any) -> list[WeeklyRule]:
    """Keep rules with non-blank text; accept a single ``weekday`` too."""
    if not isinstance(raw, list):
        return []
    rules = []
    for item in raw:
        if isinstance(item, WeeklyRule):
            rules.append(item)
            continue
        if not isinstance(item, dict):
            continue
        text = item.get("text")
        if not isinstance(text, str) or not text.strip():
            continue
        weekdays = _weekdays(item.get("weekdays"))
        if not weekdays and "weekday" in item:
            weekdays = _weekdays([item["weekday"]])
        rules.append(WeeklyRule(text=text.strip(), weekdays=weekdays))
    return rules


def _status(raw: dict) -> WeeklyStatus:
    value = raw.get("status")
    if isinstance(value, WeeklyStatus):
        return value
    try:
        return WeeklyStatus(value)
    except ValueError:
        pass
    return LEGACY_RHYTHM_TO_STATUS.get(raw.get("rhythm"), WeeklyStatus.STEADY)


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def normalize_review(raw: dict) -> GoalTrackWeeklyReview:
    """Build a review from a stored record, migrating legacy fields.

    ``rhythm`` → ``status``, ``wobbleMoment`` → ``block_note``,
    ``nextWeekOneChange`` → ``next_week_rule_text``; camelCase keys are read
    when the snake_case key is absent. Unknown enum values are dropped.
    """
    def pick(snake: str, camel: str) -> Any:
        if snake in raw and raw[snake] not in (None, ""):
            return raw[snake]
        return raw.get(camel)

    rule_text = _text(pick("next_week_rule_text", "nextWeekRuleText")) or _text(raw.get("nextWeekOneChange"))
    rules = normalize_rules(pick("next_week_rules", "nextWeekRules"))
    if not rules and rule_text.strip():
        rules = [WeeklyRule(text=rule_text.strip())]

    outcome_mode = _text(pick("outcome_mode", "outcomeMode"))
    sense = _text(raw.get("sense"))
    metric_value = pick("metric_value", "metricValue")
    try:
        metric = parse_metric_value(metric_value)
    except InvalidInputError:
        metric = None

    stored = {
        "goal_track_id": _text(pick("goal_track_id", "goalTrackId")),
        "week_start_key": _text(pick("week_start_key", "weekStartKey")),
        "status": _status(raw),
        "block_reason": normalize_missed_reason_type(pick("block_reason", "blockReason")),
        "block_note": _text(pick("block_note", "blockNote")) or _text(raw.get("wobbleMoment")),
        "next_week_rule_text": rule_text or (rules[0].text if rules else ""),
        "next_week_rules": rules,
        "planned_weekdays": _weekdays(pick("planned_weekdays", "plannedWeekdays")),
        "outcome_mode": outcome_mode if outcome_mode in OUTCOME_MODES else "",
        "metric_label": _text(pick("metric_label", "metricLabel")),
        "metric_value": metric,
        "metric_unit": _text(pick("metric_unit", "metricUnit")),
        "sense": sense if sense in SENSES else "",
        "outcome_note": _text(pick("outcome_note", "outcomeNote")),
        "coach_fact": _text(pick("coach_fact", "coachFact")),
        "coach_pattern": _text(pick("coach_pattern", "coachPattern")),
        "coach_action": _text(pick("coach_action", "coachAction")),
    }
    created = _text(pick("created_at", "createdAt"))
    updated = _text(pick("updated_at", "updatedAt"))
    if created:
        stored["created_at"] = created
    if updated:
        stored["updated_at"] = updated
    return GoalTrackWeeklyReview(**stored)
