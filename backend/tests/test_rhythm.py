"""Tests for the Rhythm Aggregator (pure functions — no Redis needed)."""

import pytest
from datetime import datetime, timezone

from cadence.engine.dates import last_n_date_keys
from cadence.engine.rhythm import (
    DOT_NEUTRAL_COLOR,
    executed_day_count,
    last_7_days_counts,
    last_executed_text,
    per_day_counts,
    dot_intensity,
    recent_events,
    recent_gap,
    rhythm_impact,
    summarize_rhythm,
    today_count,
    total_action_count,
    week_count,
)
from cadence.errors import InvalidInputError

KEYS = ["2026-02-15", "2026-02-14", "2026-02-13", "2026-02-12",
        "2026-02-11", "2026-02-10", "2026-02-09"]


def _counts(values):
    return dict(zip(KEYS, values))


# ═══════════════════════════════════════════════════════════════════════════
# Counting
# ═══════════════════════════════════════════════════════════════════════════


class TestPerDayCounts:
    def test_zero_filled_for_every_key(self):
        counts = per_day_counts([], "gt-1", KEYS)
        assert list(counts) == KEYS
        assert set(counts.values()) == {0}

    def test_counts_only_matching_track_and_window(self, make_event):
        events = [
            make_event(date_key="2026-02-15"),
            make_event(date_key="2026-02-15"),
            make_event(date_key="2026-02-13"),
            make_event(date_key="2026-02-13", goal_track_id="gt-other"),
            make_event(date_key="2026-02-01"),
        ]
        counts = per_day_counts(events, "gt-1", KEYS)
        assert counts["2026-02-15"] == 2
        assert counts["2026-02-13"] == 1
        assert sum(counts.values()) == 3
        assert len(counts) == 7

    @pytest.mark.parametrize("n", [1, 7, 30])
    def test_window_completeness(self, n, frozen_now, make_event):
        keys = last_n_date_keys(n, frozen_now)
        counts = per_day_counts([make_event()], "gt-1", keys)
        assert len(counts) == n

    def test_last_7_days_counts(self, frozen_now, make_event):
        counts = last_7_days_counts([make_event(date_key="2026-02-09")], "gt-1", frozen_now)
        assert list(counts) == KEYS
        assert counts["2026-02-09"] == 1

    def test_executed_and_total(self):
        counts = _counts([2, 0, 1, 0, 0, 3, 0])
        assert executed_day_count(counts, KEYS) == 3
        assert total_action_count(counts, KEYS) == 6


class TestRecentGap:
    @pytest.mark.parametrize("values,gap", [
        ([1, 0, 0, 0, 0, 0, 0], 0),
        ([0, 1, 0, 0, 0, 0, 0], 1),
        ([0, 0, 0, 0, 0, 0, 5], 6),
        ([0, 0, 0, 0, 0, 0, 0], 7),
    ])
    def test_gap(self, values, gap):
        assert recent_gap(_counts(values), KEYS) == gap

    def test_gap_equals_n_iff_all_zero(self):
        for values in ([0] * 7, [0] * 6 + [1]):
            gap = recent_gap(_counts(values), KEYS)
            assert 0 <= gap <= len(KEYS)
            assert (gap == len(KEYS)) == (sum(values) == 0)

    def test_gap_follows_window_length(self):
        keys = KEYS[:3]
        assert recent_gap({}, keys) == 3


class TestLastExecutedText:
    def test_today(self):
        result = last_executed_text(_counts([1, 0, 0, 0, 0, 0, 0]), KEYS)
        assert result.text == "executed today"
        assert result.is_warning is False

    def test_yesterday(self):
        assert last_executed_text(_counts([0, 2, 0, 0, 0, 0, 0]), KEYS).text == "executed yesterday"

    def test_two_days(self):
        result = last_executed_text(_counts([0, 0, 1, 0, 0, 0, 0]), KEYS)
        assert result.text == "2 days ago"
        assert result.is_warning is False

    def test_three_or_more_warns(self):
        result = last_executed_text(_counts([0, 0, 0, 1, 0, 0, 0]), KEYS)
        assert result.text == "3 days with no execution"
        assert result.is_warning is True

    def test_nothing_in_window(self):
        result = last_executed_text(_counts([0] * 7), KEYS)
        assert result.text == "7 days with no execution"
        assert result.is_warning is True


# ═══════════════════════════════════════════════════════════════════════════
# Display signals
# ═══════════════════════════════════════════════════════════════════════════


class TestDotIntensity:
    def test_zero_is_neutral(self):
        style = dot_intensity(0)
        assert style.level == 0
        assert style.color == DOT_NEUTRAL_COLOR

    @pytest.mark.parametrize("count,level,opacity", [
        (1, 1, 0.4),
        (2, 2, 0.6),
        (3, 3, 0.8),
        (4, 4, 1.0),
        (12, 4, 1.0),
    ])
    def test_steps(self, count, level, opacity):
        style = dot_intensity(count)
        assert style.level == level
        assert style.opacity == opacity

    def test_negative_rejected(self):
        with pytest.raises(InvalidInputError):
            dot_intensity(-1)


class TestRhythmImpact:
    def test_today_empty_adds_a_day(self):
        impact = rhythm_impact(_counts([0, 1, 1, 0, 0, 0, 0]), KEYS)
        assert (impact.current_days, impact.predicted_days) == (2, 3)

    def test_today_already_executed_unchanged(self):
        impact = rhythm_impact(_counts([1, 1, 0, 0, 0, 0, 0]), KEYS)
        assert (impact.current_days, impact.predicted_days) == (2, 2)

    def test_does_not_mutate_counts(self):
        counts = _counts([0] * 7)
        rhythm_impact(counts, KEYS)
        assert counts == _counts([0] * 7)


class TestViews:
    def test_today_and_week_count(self, frozen_now, make_event):
        events = [
            make_event(date_key="2026-02-15"),
            make_event(date_key="2026-02-09"),
            make_event(date_key="2026-02-08"),
            make_event(date_key="2026-02-15", goal_track_id="gt-2"),
        ]
        assert today_count(events, "gt-1", frozen_now) == 1
        assert week_count(events, "gt-1", frozen_now) == 2

    def test_recent_events_newest_first(self, make_event):
        events = [
            make_event(created_at=datetime(2026, 2, d, tzinfo=timezone.utc).isoformat(),
                       date_key=f"2026-02-{d:02d}")
            for d in range(1, 9)
        ]
        latest = recent_events(events, "gt-1")
        assert len(latest) == 5
        assert [e.date_key for e in latest] == [
            "2026-02-08", "2026-02-07", "2026-02-06", "2026-02-05", "2026-02-04",
        ]

    def test_summarize(self, make_event):
        events = [make_event(date_key="2026-02-14"), make_event(date_key="2026-02-14")]
        summary = summarize_rhythm(events, "gt-1", KEYS)
        assert summary.executed_days == 1
        assert summary.total_actions == 2
        assert summary.recent_gap == 1
        assert summary.last_executed.text == "executed yesterday"
        assert summary.impact.predicted_days == 2
        assert [d.level for d in summary.dots] == [0, 2, 0, 0, 0, 0, 0]
        assert summary.to_dict()["counts"]["2026-02-14"] == 2
