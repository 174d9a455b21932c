"""Calendar/date utilities pinned to the home timezone.

Every date key in the system is a ``YYYY-MM-DD`` string computed in
``HOME_TIMEZONE`` so that server-side jobs and clients agree on what
"today" is regardless of where they run. Naive datetimes are treated as UTC.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from cadence.config.settings import HOME_TIMEZONE
from cadence.errors import InvalidInputError

HOME_TZ = ZoneInfo(HOME_TIMEZONE)
DATE_KEY_FORMAT = "%Y-%m-%d"
WEEKDAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def to_home_date(moment: datetime | date | None = None) -> date:
    """Calendar day of ``moment`` in the home timezone (now if omitted)."""
    if moment is None:
        moment = datetime.now(timezone.utc)
    if isinstance(moment, datetime):
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(HOME_TZ).date()
    if isinstance(moment, date):
        return moment
    raise InvalidInputError(f"Expected date or datetime, got {type(moment).__name__}")


def date_key(moment: datetime | date | None = None) -> str:
    return to_home_date(moment).strftime(DATE_KEY_FORMAT)


def today_key(now: datetime | None = None) -> str:
    return date_key(now)


def parse_date_key(key: str) -> date:
    """Parse a ``YYYY-MM-DD`` key. Raises InvalidInputError on anything else."""
    if not isinstance(key, str) or len(key) != 10:
        raise InvalidInputError(f"Malformed date key: {key!r}")
    try:
        return datetime.strptime(key, DATE_KEY_FORMAT).date()
    except ValueError as exc:
        raise InvalidInputError(f"Malformed date key: {key!r}") from exc


def shift_date_key(key: str, days: int) -> str:
    return (parse_date_key(key) + timedelta(days=days)).strftime(DATE_KEY_FORMAT)


def days_between(from_key: str, to_key: str) -> int:
    """Whole days from ``from_key`` to ``to_key`` (negative if to is earlier)."""
    return (parse_date_key(to_key) - parse_date_key(from_key)).days


def week_start_key(moment: datetime | date | None = None) -> str:
    """Monday of the home-timezone week containing ``moment``."""
    day = to_home_date(moment)
    return (day - timedelta(days=day.weekday())).strftime(DATE_KEY_FORMAT)


def week_end_key(moment: datetime | date | None = None) -> str:
    """Sunday of the home-timezone week containing ``moment``."""
    day = to_home_date(moment)
    return (day + timedelta(days=6 - day.weekday())).strftime(DATE_KEY_FORMAT)


def last_n_date_keys(n: int, now: datetime | date | None = None) -> list[str]:
    """The last ``n`` date keys, today first, strictly descending."""
    if n < 0:
        raise InvalidInputError(f"Window size must be >= 0, got {n}")
    today = to_home_date(now)
    return [(today - timedelta(days=i)).strftime(DATE_KEY_FORMAT) for i in range(n)]


def week_start_keys_for_last_n_weeks(n: int, now: datetime | date | None = None) -> list[str]:
    """Mondays of the last ``n`` weeks, this week first, without duplicates."""
    if n < 0:
        raise InvalidInputError(f"Week count must be >= 0, got {n}")
    today = to_home_date(now)
    seen: set[str] = set()
    keys: list[str] = []
    for i in range(n):
        key = week_start_key(today - timedelta(days=i * 7))
        if key not in seen:
            seen.add(key)
            keys.append(key)
    return keys


def next_week_date_key_by_weekday(weekday: int, now: datetime | date | None = None) -> str:
    """Date key of ``weekday`` (0=Mon … 6=Sun) in the week after ``now``."""
    if weekday not in range(7):
        raise InvalidInputError(f"Weekday must be 0-6, got {weekday}")
    next_monday = parse_date_key(week_start_key(now)) + timedelta(days=7)
    return (next_monday + timedelta(days=weekday)).strftime(DATE_KEY_FORMAT)


def weekday_label(key: str) -> str:
    return WEEKDAY_LABELS[parse_date_key(key).weekday()]


def month_key(key: str) -> str:
    """``YYYY-MM`` prefix of a date key."""
    return parse_date_key(key).strftime("%Y-%m")


def is_date_key_before(a: str, b: str) -> bool:
    return a < b
