"""Integration tests for FastAPI server endpoints.

Uses httpx.AsyncClient with ASGITransport to test the REST API
without starting a real server. Redis is patched to use fakeredis.
"""

import pytest
import fakeredis
from unittest.mock import AsyncMock, patch
from httpx import AsyncClient, ASGITransport

from cadence.engine.dates import today_key
from cadence.services.rewrite_oracle import RewriteSuggestion


@pytest.fixture
def fake_redis():
    """Create a shared fakeredis instance for this test."""
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def patched_app(fake_redis):
    """Import and patch the FastAPI app to use fakeredis."""
    with patch("cadence.server._get_redis", return_value=fake_redis):
        from cadence.server import app
        yield app


@pytest.fixture
async def client(patched_app):
    transport = ASGITransport(app=patched_app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _create_todo(client, **body):
    resp = await client.post("/api/todos", json={"text": "Read 10 pages", **body})
    assert resp.status_code == 200
    return resp.json()["todo"]


# ═══════════════════════════════════════════════════════════════════════════
# Health Check
# ═══════════════════════════════════════════════════════════════════════════


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["redis"] is True


# ═══════════════════════════════════════════════════════════════════════════
# Todos and rhythm
# ═══════════════════════════════════════════════════════════════════════════


class TestTodoEndpoints:
    @pytest.mark.asyncio
    async def test_toggle_feeds_rhythm(self, client):
        todo = await _create_todo(client, goal_track_id="gt-1")
        resp = await client.post(f"/api/todos/{todo['id']}/toggle")
        assert resp.json()["todo"]["done"] is True

        rhythm = (await client.get("/api/goal-tracks/gt-1/rhythm")).json()
        today = today_key()
        assert rhythm["counts"][today] == 1
        assert rhythm["today_count"] == 1
        assert rhythm["last_executed"]["text"] == "executed today"
        assert len(rhythm["completion"]) == 7
        assert rhythm["completion"][0]["done"] == 1
        assert rhythm["completion"][1]["dot"]["kind"] == "no_plan"

    @pytest.mark.asyncio
    async def test_list_todos(self, client):
        await _create_todo(client)
        resp = await client.get("/api/todos")
        assert len(resp.json()["todos"]) == 1

    @pytest.mark.asyncio
    async def test_missing_todo_reports_error(self, client):
        resp = await client.post("/api/todos/ghost/toggle")
        assert resp.json() == {"error": "Todo not found", "todo_id": "ghost"}

    @pytest.mark.asyncio
    async def test_bad_date_key_is_422(self, client):
        resp = await client.post("/api/todos", json={"text": "x", "date_key": "someday"})
        assert resp.status_code == 422
        assert "error" in resp.json()

    @pytest.mark.asyncio
    async def test_delete_todo(self, client):
        todo = await _create_todo(client, goal_track_id="gt-1")
        await client.post(f"/api/todos/{todo['id']}/toggle")
        resp = await client.delete(f"/api/todos/{todo['id']}")
        assert resp.json()["status"] == "deleted"
        rhythm = (await client.get("/api/goal-tracks/gt-1/rhythm")).json()
        assert rhythm["total_actions"] == 0


class TestRewriteEndpoints:
    @pytest.mark.asyncio
    async def test_reason_rewrite_accept(self, client):
        todo = await _create_todo(client, due_at="2020-01-01T00:00:00Z", goal_track_id="gt-1")
        resp = await client.post(f"/api/todos/{todo['id']}/missed-reason", json={"reason": "HARD_TO_START"})
        data = resp.json()
        assert data["todo"]["ai_eligible"] is True
        assert data["todo"]["intervention"] == "ai_rewrite"
        assert 2 <= len(data["questions"]) <= 4

        oracle = AsyncMock(return_value=RewriteSuggestion("Too big", "Read 1 page"))
        with patch("cadence.engine.todo_actions.rewrite_todo", oracle):
            rewrite = (await client.post(f"/api/todos/{todo['id']}/rewrite")).json()
        assert rewrite["suggestion"]["rewritten_todo"] == "Read 1 page"

        accepted = (await client.post(
            f"/api/todos/{todo['id']}/rewrite/accept", json={"text": "Read 1 page"},
        )).json()["todo"]
        assert accepted["text"] == "Read 1 page"
        assert accepted["missed_reason_type"] is None
        assert accepted["due_at"] is None
        cached = (await client.get(f"/api/todos/{todo['id']}/rewrite")).json()
        assert cached["rewrite"] is None

    @pytest.mark.asyncio
    async def test_rewrite_failure_try_again(self, client):
        todo = await _create_todo(client, due_at="2020-01-01T00:00:00Z")
        await client.post(f"/api/todos/{todo['id']}/missed-reason", json={"reason": "NOT_ENOUGH_TIME"})
        with patch("cadence.engine.todo_actions.rewrite_todo", AsyncMock(return_value=None)):
            data = (await client.post(f"/api/todos/{todo['id']}/rewrite")).json()
        assert data["suggestion"] is None
        assert "try again" in data["error"]

    @pytest.mark.asyncio
    async def test_unknown_reason_is_422(self, client):
        todo = await _create_todo(client)
        resp = await client.post(f"/api/todos/{todo['id']}/missed-reason", json={"reason": "MEH"})
        assert resp.status_code == 422


# ═══════════════════════════════════════════════════════════════════════════
# Goal tracks and reviews
# ═══════════════════════════════════════════════════════════════════════════


class TestGoalTrackEndpoints:
    @pytest.mark.asyncio
    async def test_delete_goal_track(self, client):
        todo = await _create_todo(client, goal_track_id="gt-1")
        await client.post(f"/api/todos/{todo['id']}/toggle")
        result = (await client.delete("/api/goal-tracks/gt-1")).json()
        assert result["todos_unlinked"] == 1
        assert result["events_deleted"] == 1
        todos = (await client.get("/api/todos")).json()["todos"]
        assert todos[0]["goal_track_id"] is None

    @pytest.mark.asyncio
    async def test_put_and_list_review(self, client):
        body = {"status": "SPORADIC", "next_week_rules": [{"text": "Read at lunch", "weekdays": [1]}]}
        resp = await client.put("/api/goal-tracks/gt-1/reviews/2026-02-09", json=body)
        review = resp.json()["review"]
        assert review["id"] == "gt-1_2026-02-09"
        assert review["coach_pattern"] == "no execution"
        assert review["coach_action"] == "Read at lunch"

    @pytest.mark.asyncio
    async def test_review_non_numeric_metric_is_422(self, client):
        resp = await client.put(
            "/api/goal-tracks/gt-1/reviews/2026-02-09",
            json={"outcome_mode": "metric", "metric_value": "lots"},
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_list_reviews_this_week(self, client):
        from cadence.engine.dates import week_start_key
        week = week_start_key()
        await client.put(f"/api/goal-tracks/gt-1/reviews/{week}", json={"status": "STEADY"})
        data = (await client.get("/api/goal-tracks/gt-1/reviews?weeks=2")).json()
        assert [rv["week_start_key"] for rv in data["reviews"]] == [week]


# ═══════════════════════════════════════════════════════════════════════════
# Routines
# ═══════════════════════════════════════════════════════════════════════════


class TestRoutineEndpoints:
    @pytest.mark.asyncio
    async def test_two_step_completion(self, client):
        routine = (await client.post(
            "/api/routines", json={"title": "Morning", "tasks": ["Water", "Stretch"]},
        )).json()["routine"]
        rid = routine["id"]
        assert routine["phase"] == "idle"

        early = (await client.post(f"/api/routines/{rid}/complete")).json()
        assert early["committed"] is False
        assert early["reason"] == "tasks_incomplete"

        for task in routine["tasks"]:
            data = (await client.post(f"/api/routines/{rid}/tasks/{task['id']}/toggle")).json()
        assert data["routine"]["phase"] == "all_done"
        assert data["routine"]["streak"] == 0

        done = (await client.post(f"/api/routines/{rid}/complete")).json()
        assert done["committed"] is True
        assert done["routine"]["streak"] == 1
        assert done["routine"]["phase"] == "completed_today"

        again = (await client.post(f"/api/routines/{rid}/complete")).json()
        assert again["committed"] is False
        assert again["reason"] == "already_completed"
        assert again["routine"]["streak"] == 1

    @pytest.mark.asyncio
    async def test_missing_routine(self, client):
        resp = await client.post("/api/routines/ghost/complete")
        assert resp.json()["error"] == "Routine not found"

    @pytest.mark.asyncio
    async def test_rollover_once(self, client):
        first = (await client.post("/api/routines/rollover")).json()
        second = (await client.post("/api/routines/rollover")).json()
        assert first["reset"] == 0
        assert second["reset"] == 0
