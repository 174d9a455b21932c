"""Shared test fixtures for the cadence backend test suite."""

import pytest
import fakeredis
from datetime import datetime, timezone

from cadence.models.event import GoalTrackEvent
from cadence.models.routine import Routine, RoutineTask
from cadence.models.todo import Todo


# ── Redis ────────────────────────────────────────────────────────────────

@pytest.fixture
def r():
    """Fresh fakeredis instance per test (decode_responses=True like production)."""
    return fakeredis.FakeRedis(decode_responses=True)


# ── Time Freezing ───────────────────────────────────────────────────────

@pytest.fixture
def frozen_now():
    """Return a fixed 'now' datetime for deterministic date-key tests.

    Default: 2026-02-15T03:00:00Z, which is 12:00 on Sunday 2026-02-15 in
    Asia/Seoul. The home week runs 2026-02-09 (Mon) .. 2026-02-15 (Sun).
    """
    return datetime(2026, 2, 15, 3, 0, 0, tzinfo=timezone.utc)


# ── Factories ───────────────────────────────────────────────────────────

@pytest.fixture
def make_event():
    """Factory fixture for GoalTrackEvent with sensible defaults.

    Usage:
        event = make_event(date_key="2026-02-14")
    """
    _counter = 0

    def _factory(**overrides):
        nonlocal _counter
        _counter += 1
        defaults = {
            "goal_track_id": "gt-1",
            "todo_id": f"todo-{_counter}",
            "date_key": "2026-02-15",
            "todo_text": f"Test todo {_counter}",
            "created_at": datetime(2026, 2, 15, 0, _counter % 60, tzinfo=timezone.utc).isoformat(),
        }
        defaults.update(overrides)
        return GoalTrackEvent(**defaults)

    return _factory


@pytest.fixture
def make_todo():
    """Factory fixture for Todo with sensible defaults."""
    _counter = 0

    def _factory(**overrides):
        nonlocal _counter
        _counter += 1
        defaults = {
            "id": f"todo-{_counter}",
            "text": f"Test todo {_counter}",
            "date_key": "2026-02-15",
        }
        defaults.update(overrides)
        return Todo(**defaults)

    return _factory


@pytest.fixture
def make_routine():
    """Factory fixture for a three-task Routine."""
    def _factory(**overrides):
        defaults = {
            "id": "routine-1",
            "title": "Morning routine",
            "tasks": [
                RoutineTask(id="t1", title="Water"),
                RoutineTask(id="t2", title="Stretch"),
                RoutineTask(id="t3", title="Plan"),
            ],
        }
        defaults.update(overrides)
        return Routine(**defaults)

    return _factory
