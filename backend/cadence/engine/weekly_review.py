"""Weekly review save/merge/list.

Saving computes the coach card from the goal track's last 7 days of
ledger events and merges the submission into any review already stored
for the same week: empty rule lists keep the stored rules, outcome fields
left unset keep their stored values, and ``created_at`` survives updates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

import redis

from cadence.config.settings import REDIS_URL
from cadence.engine.dates import last_n_date_keys, parse_date_key, week_start_keys_for_last_n_weeks
from cadence.engine.event_ledger import get_events_for_goal_track
from cadence.engine.rhythm import RHYTHM_WINDOW_DAYS, per_day_counts
from cadence.engine.weekly_coach import build_weekly_coach
from cadence.errors import InvalidInputError
from cadence.models.event import GoalTrackEvent
from cadence.models.review import (
    OUTCOME_MODES,
    SENSES,
    GoalTrackWeeklyReview,
    WeeklyRule,
    WeeklyStatus,
    build_review_id,
    normalize_rules,
    parse_metric_value,
)
from cadence.models.todo import MissedReasonType, normalize_missed_reason_type

logger = logging.getLogger(__name__)


@dataclass
class ReviewSubmission:
    """What the user filled in for one goal track and week.

    Outcome fields left as ``None`` mean "not answered this time".
    """
    goal_track_id: str
    week_start_key: str
    status: WeeklyStatus = WeeklyStatus.STEADY
    block_reason: Optional[MissedReasonType] = None
    block_note: str = ""
    next_week_rules: list[WeeklyRule] = field(default_factory=list)
    outcome_mode: Optional[str] = None
    metric_label: Optional[str] = None
    metric_value: Optional[float] = None
    metric_unit: Optional[str] = None
    sense: Optional[str] = None
    outcome_note: Optional[str] = None

    def __post_init__(self):
        parse_date_key(self.week_start_key)
        if not isinstance(self.status, WeeklyStatus):
            try:
                self.status = WeeklyStatus(self.status)
            except ValueError as exc:
                raise InvalidInputError(f"Unknown weekly status: {self.status!r}") from exc
        self.block_reason = normalize_missed_reason_type(self.block_reason)
        self.next_week_rules = normalize_rules(self.next_week_rules)
        if self.outcome_mode is not None and self.outcome_mode not in OUTCOME_MODES:
            raise InvalidInputError(f"Unknown outcome mode: {self.outcome_mode!r}")
        if self.sense is not None and self.sense not in SENSES:
            raise InvalidInputError(f"Unknown sense: {self.sense!r}")
        self.metric_value = parse_metric_value(self.metric_value)


def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def _first_weekday(rules: list[WeeklyRule]) -> list[int]:
    if rules and rules[0].weekdays:
        return [rules[0].weekdays[0]]
    return []


def save_weekly_review(
    submission: ReviewSubmission,
    events: Optional[Iterable[GoalTrackEvent]] = None,
    now: Optional[datetime] = None,
    r: redis.Redis | None = None,
) -> GoalTrackWeeklyReview:
    """Upsert the review for ``submission``'s goal track and week."""
    r = r or _get_redis()
    gid = submission.goal_track_id
    if events is None:
        events = get_events_for_goal_track(gid, r)

    keys = last_n_date_keys(RHYTHM_WINDOW_DAYS, now)
    counts = per_day_counts(events, gid, keys)

    review_id = build_review_id(gid, submission.week_start_key)
    existing = GoalTrackWeeklyReview.from_redis(r, review_id)

    rules = submission.next_week_rules or (existing.next_week_rules if existing else [])
    submitted_text = submission.next_week_rules[0].text if submission.next_week_rules else ""
    merged_text = rules[0].text if rules else ""
    planned = _first_weekday(rules) or (existing.planned_weekdays if existing else [])

    coach = build_weekly_coach(counts, keys, rule_text=submitted_text, fallback_text=merged_text)

    def merged(name: str, default):
        value = getattr(submission, name)
        if value is not None:
            return value
        return getattr(existing, name) if existing else default

    stamp = (now or datetime.now(timezone.utc)).isoformat()
    review = GoalTrackWeeklyReview(
        goal_track_id=gid,
        week_start_key=submission.week_start_key,
        status=submission.status,
        block_reason=submission.block_reason,
        block_note=submission.block_note,
        next_week_rule_text=merged_text,
        next_week_rules=rules,
        planned_weekdays=planned,
        outcome_mode=merged("outcome_mode", ""),
        metric_label=merged("metric_label", ""),
        metric_value=merged("metric_value", None),
        metric_unit=merged("metric_unit", ""),
        sense=merged("sense", ""),
        outcome_note=merged("outcome_note", ""),
        coach_fact=coach.fact,
        coach_pattern=coach.pattern,
        coach_action=coach.action,
        created_at=existing.created_at if existing else stamp,
        updated_at=stamp,
    )
    review.to_redis(r)
    logger.info(
        "Weekly review %s %s — %s / %s",
        review.id, "updated" if existing else "created", coach.pattern, coach.action,
    )
    return review


def get_weekly_review(
    goal_track_id: str,
    week_start_key: str,
    r: redis.Redis | None = None,
) -> Optional[GoalTrackWeeklyReview]:
    r = r or _get_redis()
    return GoalTrackWeeklyReview.from_redis(r, build_review_id(goal_track_id, week_start_key))


def list_weekly_reviews(
    goal_track_id: str,
    weeks: int = 4,
    now: Optional[datetime] = None,
    r: redis.Redis | None = None,
) -> list[GoalTrackWeeklyReview]:
    """Stored reviews of the last ``weeks`` weeks, most recent week first."""
    r = r or _get_redis()
    reviews = []
    for key in week_start_keys_for_last_n_weeks(weeks, now):
        review = GoalTrackWeeklyReview.from_redis(r, build_review_id(goal_track_id, key))
        if review:
            reviews.append(review)
    return reviews
