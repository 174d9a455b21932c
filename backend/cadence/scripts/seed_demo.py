"""Seed Redis with a demo goal track, a week of completions and a routine.

Run: python -m cadence.scripts.seed_demo (from backend/)
"""

from datetime import datetime, timedelta, timezone

import redis

from cadence.config.settings import REDIS_URL
from cadence.engine.dates import last_n_date_keys, today_key
from cadence.engine.event_ledger import record_completion
from cadence.models.event import EVENT_PREFIX
from cadence.models.review import REVIEW_PREFIX
from cadence.models.routine import ROUTINE_PREFIX, Routine, RoutineTask
from cadence.models.todo import TODO_PREFIX, MissedReasonType, Todo

DEMO_GOAL_TRACK = "gt-reading"

# Days (0 = today) on which the demo track was executed, with action counts
DEMO_EXECUTIONS = {1: 1, 2: 2, 4: 1, 5: 3}


def clear_demo_data(r: redis.Redis) -> None:
    """Remove every cadence key from Redis."""
    for prefix in (EVENT_PREFIX, TODO_PREFIX, ROUTINE_PREFIX, REVIEW_PREFIX, "todo_ai:"):
        for key in r.scan_iter(f"{prefix}*"):
            r.delete(key)


def seed(r: redis.Redis | None = None) -> dict:
    r = r or redis.Redis.from_url(REDIS_URL, decode_responses=True)
    clear_demo_data(r)

    now = datetime.now(timezone.utc)
    keys = last_n_date_keys(7, now)
    today = today_key(now)

    # ── Past week of goal-track executions ───────────────────────────────
    events = 0
    for offset, count in DEMO_EXECUTIONS.items():
        day = keys[offset]
        for i in range(count):
            todo = Todo(
                id=f"todo-demo-{offset}-{i}",
                text=f"Read {10 * (i + 1)} pages",
                date_key=day,
                done=True,
                goal_track_id=DEMO_GOAL_TRACK,
                completed_at=(now - timedelta(days=offset)).isoformat(),
            )
            todo.to_redis(r)
            record_completion(DEMO_GOAL_TRACK, todo.id, todo.text, day, r)
            events += 1

    # ── Today: one planned todo, one overdue and tagged ──────────────────
    todays = [
        Todo(id="todo-today-1", text="Read one chapter", date_key=today,
             goal_track_id=DEMO_GOAL_TRACK),
        Todo(id="todo-today-2", text="Write the book summary", date_key=today,
             due_at=(now - timedelta(hours=3)).isoformat(),
             missed_reason_type=MissedReasonType.HARD_TO_START,
             goal_track_id=DEMO_GOAL_TRACK),
    ]
    for todo in todays:
        todo.to_redis(r)

    # ── Morning routine, last completed two days ago ─────────────────────
    routine = Routine(
        id="routine-morning",
        title="Morning routine",
        tasks=[
            RoutineTask(id="task-water", title="Drink a glass of water"),
            RoutineTask(id="task-stretch", title="Stretch for 5 minutes"),
            RoutineTask(id="task-plan", title="Write today's top 3"),
        ],
        streak=4,
        total_completed_days=12,
        last_completed_date=keys[2],
        completion_history={keys[2], keys[3], keys[5], keys[6]},
    )
    routine.to_redis(r)

    summary = {"events": events, "todos": events + len(todays), "routines": 1}
    print(f"Seeded {events} completion events for {DEMO_GOAL_TRACK}")
    print(f"Seeded {len(todays)} todos for today ({today})")
    print(f"Seeded routine [{routine.id}] streak={routine.streak}")
    return summary


if __name__ == "__main__":
    seed()
