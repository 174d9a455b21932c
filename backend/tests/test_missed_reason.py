"""Tests for missed-reason normalisation, the AI gate and the question picker."""

import pytest
from datetime import datetime, timedelta, timezone

from cadence.engine.missed_reason import (
    AI_ELIGIBLE_REASONS,
    HARD_TO_START_QUESTION_POOL,
    NOT_ENOUGH_TIME_QUESTION_POOL,
    Intervention,
    MissedReasonType,
    hash_seed,
    intervention_for,
    is_ai_eligible,
    is_overdue,
    normalize_missed_reason_type,
    pick_stable_questions,
    reflection_questions,
    resolve_due_at,
)
from cadence.errors import InvalidInputError

NOW = datetime(2026, 2, 15, 3, 0, tzinfo=timezone.utc)
YESTERDAY = (NOW - timedelta(days=1)).isoformat()
TOMORROW = (NOW + timedelta(days=1)).isoformat()


# ═══════════════════════════════════════════════════════════════════════════
# Reason taxonomy
# ═══════════════════════════════════════════════════════════════════════════


class TestNormalize:
    @pytest.mark.parametrize("value,expected", [
        ("FORGOT", MissedReasonType.COMPLETED_BUT_NOT_CHECKED),
        ("TIME_MISMATCH", MissedReasonType.NOT_ENOUGH_TIME),
        ("JUST_SKIP", MissedReasonType.WANT_TO_REST),
        ("HARD_TO_START", MissedReasonType.HARD_TO_START),
        (MissedReasonType.WANT_TO_REST, MissedReasonType.WANT_TO_REST),
    ])
    def test_current_and_legacy(self, value, expected):
        assert normalize_missed_reason_type(value) == expected

    @pytest.mark.parametrize("value", ["LAZY", "", None, 3, "hard_to_start"])
    def test_unknown_maps_to_none(self, value):
        assert normalize_missed_reason_type(value) is None

    def test_todo_normalizes_on_load(self, make_todo):
        todo = make_todo(missed_reason_type="FORGOT")
        assert todo.missed_reason_type == MissedReasonType.COMPLETED_BUT_NOT_CHECKED


class TestResolveDueAt:
    def test_empty_is_none(self):
        assert resolve_due_at("") is None
        assert resolve_due_at(None) is None

    def test_zulu_suffix(self):
        assert resolve_due_at("2026-02-14T10:00:00Z") == datetime(2026, 2, 14, 10, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert resolve_due_at("2026-02-14T10:00:00").tzinfo is not None

    def test_garbage_rejected(self):
        with pytest.raises(InvalidInputError):
            resolve_due_at("next tuesday-ish")


# ═══════════════════════════════════════════════════════════════════════════
# Overdue and AI eligibility
# ═══════════════════════════════════════════════════════════════════════════


class TestEligibility:
    def test_overdue_requires_past_due_and_not_done(self, make_todo):
        assert is_overdue(make_todo(due_at=YESTERDAY), NOW)
        assert not is_overdue(make_todo(due_at=TOMORROW), NOW)
        assert not is_overdue(make_todo(due_at=YESTERDAY, done=True), NOW)
        assert not is_overdue(make_todo(), NOW)

    def test_due_exactly_now_is_not_overdue(self, make_todo):
        assert not is_overdue(make_todo(due_at=NOW.isoformat()), NOW)

    @pytest.mark.parametrize("reason", list(MissedReasonType) + [None])
    @pytest.mark.parametrize("due_at", [YESTERDAY, TOMORROW, ""])
    @pytest.mark.parametrize("done", [True, False])
    def test_gate_iff(self, make_todo, reason, due_at, done):
        todo = make_todo(missed_reason_type=reason, due_at=due_at, done=done)
        expected = is_overdue(todo, NOW) and reason in AI_ELIGIBLE_REASONS
        assert is_ai_eligible(todo, NOW) == expected

    def test_scenario_hard_to_start_yesterday(self, make_todo):
        todo = make_todo(due_at=YESTERDAY, missed_reason_type=MissedReasonType.HARD_TO_START)
        assert is_ai_eligible(todo, NOW)

    @pytest.mark.parametrize("reason,expected", [
        (MissedReasonType.HARD_TO_START, Intervention.AI_REWRITE),
        (MissedReasonType.NOT_ENOUGH_TIME, Intervention.AI_REWRITE),
        (MissedReasonType.COMPLETED_BUT_NOT_CHECKED, Intervention.MARK_COMPLETE),
        (MissedReasonType.WANT_TO_REST, Intervention.ACKNOWLEDGE),
        (None, Intervention.NONE),
    ])
    def test_intervention(self, make_todo, reason, expected):
        todo = make_todo(due_at=YESTERDAY, missed_reason_type=reason)
        assert intervention_for(todo, NOW) == expected

    def test_no_intervention_when_not_overdue(self, make_todo):
        todo = make_todo(due_at=TOMORROW, missed_reason_type=MissedReasonType.HARD_TO_START)
        assert intervention_for(todo, NOW) == Intervention.NONE


# ═══════════════════════════════════════════════════════════════════════════
# Stable question picker
# ═══════════════════════════════════════════════════════════════════════════


class TestQuestionPicker:
    def test_hash_known_values(self):
        assert hash_seed("") == 0
        assert hash_seed("a") == 97
        assert hash_seed("ab") == 97 * 31 + 98

    def test_hash_wraps_to_32_bits(self):
        assert 0 <= hash_seed("x" * 200) <= 0xFFFFFFFF

    def test_same_seed_same_list(self):
        first = pick_stable_questions("todo-1-HARD_TO_START", HARD_TO_START_QUESTION_POOL)
        second = pick_stable_questions("todo-1-HARD_TO_START", HARD_TO_START_QUESTION_POOL)
        assert first == second

    @pytest.mark.parametrize("seed", [f"todo-{i}-NOT_ENOUGH_TIME" for i in range(25)])
    def test_count_and_membership(self, seed):
        picked = pick_stable_questions(seed, NOT_ENOUGH_TIME_QUESTION_POOL)
        assert 2 <= len(picked) <= 4
        assert len(set(picked)) == len(picked)
        assert set(picked) <= set(NOT_ENOUGH_TIME_QUESTION_POOL)

    def test_small_pool_returned_whole(self):
        assert pick_stable_questions("s", ["a", "b"]) == ["a", "b"]

    def test_count_follows_hash(self):
        seed = "ab"
        expected = hash_seed(seed) % 3 + 2
        assert len(pick_stable_questions(seed, HARD_TO_START_QUESTION_POOL)) == expected

    def test_reflection_questions_per_reason(self, make_todo):
        todo = make_todo(id="todo-7", missed_reason_type=MissedReasonType.HARD_TO_START)
        questions = reflection_questions(todo)
        assert questions == pick_stable_questions("todo-7-HARD_TO_START", HARD_TO_START_QUESTION_POOL)
        assert reflection_questions(todo) == questions

    def test_no_questions_for_rest(self, make_todo):
        todo = make_todo(missed_reason_type=MissedReasonType.WANT_TO_REST)
        assert reflection_questions(todo) == []
