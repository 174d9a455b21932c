"""FastAPI server exposing the cadence engine to the app.

REST endpoints for todos, goal-track rhythm, weekly reviews and routines.
Aggregations run on data read from Redis per request; missing entities are
reported as ``{"error": ...}`` payloads, malformed input as HTTP 422.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

import redis
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from cadence.config.settings import REDIS_URL
from cadence.engine.completion import completion_ratios, dot_style_from_ratio
from cadence.engine.dates import last_n_date_keys, today_key, weekday_label
from cadence.engine.event_ledger import get_events_for_goal_track
from cadence.engine.missed_reason import intervention_for, is_ai_eligible, reflection_questions
from cadence.engine.rhythm import (
    RHYTHM_WINDOW_DAYS,
    recent_events,
    summarize_rhythm,
    today_count,
    week_count,
)
from cadence.engine.routine_streak import (
    NOT_FOUND,
    commit_completion,
    roll_over_day,
    routine_phase,
    save_task_toggle,
)
from cadence.engine.todo_actions import (
    accept_rewrite,
    backfill_completion_events,
    create_todo,
    delete_goal_track,
    delete_todo,
    dismiss_rewrite,
    get_rewrite_state,
    request_rewrite,
    select_missed_reason,
    toggle_todo,
)
from cadence.engine.weekly_review import ReviewSubmission, list_weekly_reviews, save_weekly_review
from cadence.errors import InvalidInputError
from cadence.models.review import WeeklyRule
from cadence.models.routine import Routine, get_all_routines, normalize_routine
from cadence.models.todo import Todo, get_todos_by_date_keys, get_todos_for_day

logger = logging.getLogger(__name__)

app = FastAPI(title="Cadence", description="Execution & habit-rhythm analytics")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=422, content={"error": str(exc)})


def _todo_to_frontend(todo: Todo, now: Optional[datetime] = None) -> dict:
    return {
        "id": todo.id,
        "text": todo.text,
        "done": todo.done,
        "date_key": todo.date_key,
        "due_at": todo.due_at or None,
        "missed_reason_type": todo.missed_reason_type.value if todo.missed_reason_type else None,
        "goal_track_id": todo.goal_track_id,
        "intervention": intervention_for(todo, now).value,
        "ai_eligible": is_ai_eligible(todo, now),
        "created_at": todo.created_at,
        "completed_at": todo.completed_at or None,
    }


def _routine_to_frontend(routine: Routine, day: str) -> dict:
    return {
        "id": routine.id,
        "title": routine.title,
        "tasks": [t.to_dict() for t in routine.tasks],
        "streak": routine.streak,
        "total_completed_days": routine.total_completed_days,
        "monthly_success_rate": routine.monthly_success_rate,
        "last_completed_date": routine.last_completed_date or None,
        "completion_history": sorted(routine.completion_history),
        "phase": routine_phase(routine, day).value,
    }


# ── Health ───────────────────────────────────────────────────────────────

@app.get("/api/health")
async def health():
    r = _get_redis()
    try:
        r.ping()
        redis_ok = True
    except redis.RedisError:
        redis_ok = False

    return {"status": "ok", "redis": redis_ok, "today": today_key()}


# ══════════════════════════════════════════════════════════════════════════
# Todos
# ══════════════════════════════════════════════════════════════════════════


class CreateTodoRequest(BaseModel):
    text: str
    date_key: Optional[str] = None
    due_at: str = ""
    goal_track_id: Optional[str] = None


class MissedReasonRequest(BaseModel):
    reason: str


class AcceptRewriteRequest(BaseModel):
    text: str


@app.get("/api/todos")
async def list_todos(date_key: Optional[str] = None):
    r = _get_redis()
    key = date_key or today_key()
    return {"date_key": key, "todos": [_todo_to_frontend(t) for t in get_todos_for_day(key, r)]}


@app.post("/api/todos")
async def create_todo_endpoint(req: CreateTodoRequest):
    r = _get_redis()
    todo = create_todo(
        req.text,
        date_key=req.date_key,
        due_at=req.due_at,
        goal_track_id=req.goal_track_id,
        r=r,
    )
    return {"successful": True, "todo": _todo_to_frontend(todo)}


@app.post("/api/todos/{todo_id}/toggle")
async def toggle_todo_endpoint(todo_id: str):
    r = _get_redis()
    todo = toggle_todo(todo_id, r=r)
    if todo is None:
        return {"error": "Todo not found", "todo_id": todo_id}
    return {"todo": _todo_to_frontend(todo)}


@app.delete("/api/todos/{todo_id}")
async def delete_todo_endpoint(todo_id: str):
    r = _get_redis()
    if not delete_todo(todo_id, r=r):
        return {"error": "Todo not found", "todo_id": todo_id}
    return {"status": "deleted", "todo_id": todo_id}


@app.post("/api/todos/{todo_id}/missed-reason")
async def missed_reason_endpoint(todo_id: str, req: MissedReasonRequest):
    r = _get_redis()
    todo = select_missed_reason(todo_id, req.reason, r=r)
    if todo is None:
        return {"error": "Todo not found", "todo_id": todo_id}
    return {"todo": _todo_to_frontend(todo), "questions": reflection_questions(todo)}


@app.get("/api/todos/{todo_id}/rewrite")
async def get_rewrite_endpoint(todo_id: str):
    r = _get_redis()
    state = get_rewrite_state(todo_id, r)
    return {"todo_id": todo_id, "rewrite": state.to_dict() if state else None}


@app.post("/api/todos/{todo_id}/rewrite")
async def request_rewrite_endpoint(todo_id: str):
    r = _get_redis()
    state = await request_rewrite(todo_id, r=r)
    if state is None:
        return {"error": "Todo not found", "todo_id": todo_id}
    return state.to_dict()


@app.post("/api/todos/{todo_id}/rewrite/accept")
async def accept_rewrite_endpoint(todo_id: str, req: AcceptRewriteRequest):
    r = _get_redis()
    todo = accept_rewrite(todo_id, req.text, r=r)
    if todo is None:
        return {"error": "Todo not found", "todo_id": todo_id}
    return {"todo": _todo_to_frontend(todo)}


@app.post("/api/todos/{todo_id}/rewrite/dismiss")
async def dismiss_rewrite_endpoint(todo_id: str):
    r = _get_redis()
    return {"todo_id": todo_id, "dismissed": dismiss_rewrite(todo_id, r=r)}


# ══════════════════════════════════════════════════════════════════════════
# Goal tracks: rhythm, reviews, cascade delete
# ══════════════════════════════════════════════════════════════════════════


@app.get("/api/goal-tracks/{goal_track_id}/rhythm")
async def goal_track_rhythm(goal_track_id: str, days: int = Query(RHYTHM_WINDOW_DAYS, ge=1, le=62)):
    """Rolling execution signals plus planned-vs-done dots for the window."""
    r = _get_redis()
    now = datetime.now(timezone.utc)
    keys = last_n_date_keys(days, now)
    events = get_events_for_goal_track(goal_track_id, r)
    summary = summarize_rhythm(events, goal_track_id, keys)
    ratios = completion_ratios(get_todos_by_date_keys(keys, r), goal_track_id, keys)

    return {
        **summary.to_dict(),
        "today_count": today_count(events, goal_track_id, now),
        "week_count": week_count(events, goal_track_id, now),
        "recent_events": [e.to_dict() for e in recent_events(events, goal_track_id)],
        "completion": [
            {
                "date_key": k,
                "weekday": weekday_label(k),
                **ratios[k].to_dict(),
                "dot": dot_style_from_ratio(ratios[k].done, ratios[k].total).to_dict(),
            }
            for k in keys
        ],
    }


@app.delete("/api/goal-tracks/{goal_track_id}")
async def delete_goal_track_endpoint(goal_track_id: str):
    r = _get_redis()
    return delete_goal_track(goal_track_id, r=r)


@app.post("/api/goal-tracks/backfill")
async def backfill_endpoint(date_key: Optional[str] = None):
    r = _get_redis()
    key = date_key or today_key()
    return {"date_key": key, "created": backfill_completion_events(key, r)}


class WeeklyRuleModel(BaseModel):
    text: str
    weekdays: list[int] = Field(default_factory=list)


class WeeklyReviewRequest(BaseModel):
    status: str = "STEADY"
    block_reason: Optional[str] = None
    block_note: str = ""
    next_week_rules: list[WeeklyRuleModel] = Field(default_factory=list)
    outcome_mode: Optional[str] = None
    metric_label: Optional[str] = None
    metric_value: Optional[float | str] = None
    metric_unit: Optional[str] = None
    sense: Optional[str] = None
    outcome_note: Optional[str] = None


@app.put("/api/goal-tracks/{goal_track_id}/reviews/{week_start_key}")
async def put_weekly_review(goal_track_id: str, week_start_key: str, req: WeeklyReviewRequest):
    r = _get_redis()
    submission = ReviewSubmission(
        goal_track_id=goal_track_id,
        week_start_key=week_start_key,
        status=req.status,
        block_reason=req.block_reason,
        block_note=req.block_note,
        next_week_rules=[WeeklyRule(text=rule.text, weekdays=rule.weekdays) for rule in req.next_week_rules],
        outcome_mode=req.outcome_mode,
        metric_label=req.metric_label,
        metric_value=req.metric_value,
        metric_unit=req.metric_unit,
        sense=req.sense,
        outcome_note=req.outcome_note,
    )
    review = save_weekly_review(submission, r=r)
    return {"review": review.to_json()}


@app.get("/api/goal-tracks/{goal_track_id}/reviews")
async def get_weekly_reviews(goal_track_id: str, weeks: int = Query(4, ge=1, le=52)):
    r = _get_redis()
    reviews = list_weekly_reviews(goal_track_id, weeks, r=r)
    return {"goal_track_id": goal_track_id, "reviews": [rv.to_json() for rv in reviews]}


# ══════════════════════════════════════════════════════════════════════════
# Routines
# ══════════════════════════════════════════════════════════════════════════


class CreateRoutineRequest(BaseModel):
    title: str
    tasks: list[str] = Field(default_factory=list)


@app.get("/api/routines")
async def list_routines():
    r = _get_redis()
    day = today_key()
    return {"routines": [_routine_to_frontend(rt, day) for rt in get_all_routines(r)]}


@app.post("/api/routines")
async def create_routine(req: CreateRoutineRequest):
    r = _get_redis()
    if not req.title.strip():
        raise InvalidInputError("Routine title cannot be empty")
    routine = normalize_routine({"title": req.title, "tasks": req.tasks})
    routine.to_redis(r)
    logger.info("Created routine %s with %d task(s)", routine.id, len(routine.tasks))
    return {"successful": True, "routine": _routine_to_frontend(routine, today_key())}


@app.get("/api/routines/{routine_id}")
async def get_routine(routine_id: str):
    r = _get_redis()
    routine = Routine.from_redis(r, routine_id)
    if routine is None:
        return {"error": "Routine not found", "routine_id": routine_id}
    return {"routine": _routine_to_frontend(routine, today_key())}


@app.post("/api/routines/{routine_id}/tasks/{task_id}/toggle")
async def toggle_routine_task(routine_id: str, task_id: str):
    r = _get_redis()
    day = today_key()
    routine = save_task_toggle(routine_id, task_id, day, r=r)
    if routine is None:
        return {"error": "Routine not found", "routine_id": routine_id}
    return {"routine": _routine_to_frontend(routine, day)}


@app.post("/api/routines/{routine_id}/complete")
async def complete_routine_endpoint(routine_id: str):
    r = _get_redis()
    day = today_key()
    outcome = commit_completion(routine_id, day, r=r)
    if outcome.reason == NOT_FOUND:
        return {"error": "Routine not found", "routine_id": routine_id}
    return {
        "committed": outcome.committed,
        "reason": outcome.reason or None,
        "routine": _routine_to_frontend(outcome.routine, day),
    }


@app.post("/api/routines/rollover")
async def rollover_routines():
    r = _get_redis()
    day = today_key()
    return {"date_key": day, "reset": roll_over_day(day, r=r)}
