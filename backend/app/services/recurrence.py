from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from app.models.alarm import AlarmKind
from app.schemas.alarm import AlarmSchedule

# One full week ahead plus the reference day itself
SEARCH_DAYS = 8


def ensure_timezone(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def sunday_based_weekday(day: date) -> int:
    """Weekday number with 0 = Sunday, matching how repeat days are stored."""
    return (day.weekday() + 1) % 7


def _occurrence(day: date, time_of_day: time, zone: ZoneInfo) -> datetime:
    local = datetime.combine(day, time_of_day.replace(tzinfo=None), tzinfo=zone)
    return local.astimezone(timezone.utc)


def _next_weekly_occurrence(
    reference: datetime,
    time_of_day: time,
    repeat_days: list[int],
    zone: ZoneInfo,
    *,
    inclusive: bool,
) -> datetime | None:
    start_day = reference.astimezone(zone).date()
    for offset in range(SEARCH_DAYS):
        day = start_day + timedelta(days=offset)
        if sunday_based_weekday(day) not in repeat_days:
            continue
        candidate = _occurrence(day, time_of_day, zone)
        if candidate > reference or (inclusive and candidate == reference):
            return candidate
    return None


def _next_once_trigger(schedule: AlarmSchedule, now: datetime, zone: ZoneInfo) -> datetime | None:
    if schedule.last_triggered_at is not None or schedule.scheduled_date is None:
        return None
    instant = _occurrence(schedule.scheduled_date, schedule.time_of_day, zone)
    if instant > now:
        return instant
    return None


def _next_repeat_trigger(schedule: AlarmSchedule, now: datetime, zone: ZoneInfo) -> datetime | None:
    if not schedule.repeat_days:
        return None

    last_triggered = ensure_timezone(schedule.last_triggered_at)
    reference = last_triggered or ensure_timezone(schedule.created_at) or now
    # An item that never fired may fire on the exact instant it was created
    never_fired = last_triggered is None
    candidate = _next_weekly_occurrence(
        reference,
        schedule.time_of_day,
        schedule.repeat_days,
        zone,
        inclusive=never_fired,
    )
    if candidate is not None and candidate <= now:
        # Occurrences missed while nothing was scanning collapse into a single fire
        candidate = _next_weekly_occurrence(
            now, schedule.time_of_day, schedule.repeat_days, zone, inclusive=never_fired
        )
    return candidate


def compute_next_trigger(
    schedule: AlarmSchedule,
    now: datetime,
    *,
    tz_name: str = "UTC",
) -> datetime | None:
    """Return the next instant the alarm must fire, or ``None`` if it never will.

    Wall-clock fields (time of day, date, weekdays) are read in ``tz_name``;
    the result is always a UTC-aware datetime. The function is pure: the same
    schedule and ``now`` always produce the same answer.
    """
    current = ensure_timezone(now)
    zone = ZoneInfo(tz_name)

    if schedule.kind == AlarmKind.once:
        return _next_once_trigger(schedule, current, zone)
    if schedule.kind == AlarmKind.repeat:
        return _next_repeat_trigger(schedule, current, zone)
    return None


def seconds_until(target: datetime, now: datetime) -> int:
    """Whole seconds from ``now`` until ``target`` (negative once it has passed)."""
    delta = ensure_timezone(target) - ensure_timezone(now)
    return int(delta.total_seconds() // 1)
