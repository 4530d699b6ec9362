"""Persistence of alarms and their trigger bookkeeping.

``record_trigger`` is the only writer of ``last_triggered_at``,
``trigger_count`` and the post-fire ``next_trigger_at``. It writes all three
in one conditional UPDATE keyed on the ``next_trigger_at`` value the caller
read, so two scanners racing on the same occurrence cannot both record it.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Any, Iterable, List, Optional

from sqlalchemy import update
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import settings
from app.models.alarm import Alarm, AlarmKind, AlarmSource
from app.schemas.alarm import AlarmSchedule, normalize_repeat_days
from app.services.recurrence import compute_next_trigger, ensure_timezone

logger = logging.getLogger(__name__)

SCHEDULE_FIELDS = frozenset({"kind", "time_of_day", "scheduled_date", "repeat_days", "is_active"})


def _utcnow(now: Optional[datetime] = None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    return ensure_timezone(now).astimezone(timezone.utc)


def _next_for(alarm: Alarm, now: datetime, tz_name: Optional[str]) -> Optional[datetime]:
    if not alarm.is_active:
        return None
    return compute_next_trigger(
        AlarmSchedule.from_alarm(alarm),
        now,
        tz_name=tz_name or settings.ALARM_TIMEZONE,
    )


def _validate_schedule(kind: AlarmKind, scheduled_date: Optional[date], repeat_days: List[int]) -> None:
    if kind == AlarmKind.once and scheduled_date is None:
        raise ValueError("A once alarm needs a scheduled date")
    if kind == AlarmKind.repeat and not repeat_days:
        raise ValueError("A repeating alarm needs at least one weekday")


async def create_alarm(
    session: AsyncSession,
    *,
    user_id: int,
    kind: AlarmKind,
    time_of_day: time,
    scheduled_date: Optional[date] = None,
    repeat_days: Optional[Iterable[int]] = None,
    title: Optional[str] = None,
    message: Optional[str] = None,
    source: AlarmSource = AlarmSource.alarm,
    reminder_id: Optional[int] = None,
    is_active: bool = True,
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> Alarm:
    """Persist a new alarm with its first ``next_trigger_at`` already computed."""
    if source == AlarmSource.reminder and reminder_id is None:
        raise ValueError("A reminder alarm needs a reminder_id")
    days = normalize_repeat_days(list(repeat_days or []))
    _validate_schedule(kind, scheduled_date, days)

    created_at = _utcnow(now)
    alarm = Alarm(
        user_id=user_id,
        source=source,
        reminder_id=reminder_id if source == AlarmSource.reminder else None,
        title=title,
        message=message,
        kind=kind,
        time_of_day=time_of_day,
        scheduled_date=scheduled_date if kind == AlarmKind.once else None,
        repeat_days=days if kind == AlarmKind.repeat else [],
        is_active=is_active,
        created_at=created_at,
        updated_at=created_at,
    )
    alarm.next_trigger_at = _next_for(alarm, created_at, tz_name)
    session.add(alarm)
    await session.commit()
    await session.refresh(alarm)
    logger.info(
        "Created %s alarm %s for user %s (next trigger %s)",
        AlarmKind(alarm.kind).value,
        alarm.id,
        user_id,
        alarm.next_trigger_at,
    )
    return alarm


async def get_alarm(session: AsyncSession, *, alarm_id: int) -> Optional[Alarm]:
    statement = select(Alarm).where(Alarm.id == alarm_id)
    result = await session.exec(statement)
    return result.one_or_none()


async def update_schedule(
    session: AsyncSession,
    *,
    alarm: Alarm,
    changes: dict[str, Any],
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> Alarm:
    """Apply schedule edits and recompute ``next_trigger_at`` in the same commit.

    Only the schedule fields plus ``title``/``message`` may be changed here;
    the trigger bookkeeping is owned by ``record_trigger``.
    """
    allowed = SCHEDULE_FIELDS | {"title", "message"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Cannot update alarm fields: {', '.join(sorted(unknown))}")

    for field_name, value in changes.items():
        if field_name == "repeat_days":
            value = normalize_repeat_days(value)
        setattr(alarm, field_name, value)
    kind = AlarmKind(alarm.kind)
    _validate_schedule(kind, alarm.scheduled_date, normalize_repeat_days(alarm.repeat_days))

    current = _utcnow(now)
    if SCHEDULE_FIELDS & set(changes):
        alarm.next_trigger_at = _next_for(alarm, current, tz_name)
    alarm.updated_at = current
    session.add(alarm)
    await session.commit()
    await session.refresh(alarm)
    return alarm


async def list_due_alarms(session: AsyncSession, *, now: Optional[datetime] = None) -> List[Alarm]:
    """Active alarms whose next trigger is at or before ``now``, oldest first."""
    statement = (
        select(Alarm)
        .where(
            Alarm.is_active.is_(True),
            Alarm.next_trigger_at.is_not(None),
            Alarm.next_trigger_at <= _utcnow(now),
        )
        .order_by(Alarm.next_trigger_at, Alarm.id)
    )
    result = await session.exec(statement)
    return list(result.all())


async def record_trigger(
    session: AsyncSession,
    *,
    alarm: Alarm,
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> bool:
    """Record one fire of ``alarm`` at its current ``next_trigger_at``.

    Returns ``False`` without writing anything when another writer already
    moved ``next_trigger_at`` (or deactivated the alarm) since it was read.
    On success ``alarm`` is refreshed with the stored values.
    """
    observed = alarm.next_trigger_at
    if observed is None:
        return False

    fired_at = ensure_timezone(observed)
    current = _utcnow(now)
    schedule = AlarmSchedule.from_alarm(alarm).model_copy(update={"last_triggered_at": fired_at})
    next_trigger = compute_next_trigger(
        schedule,
        current,
        tz_name=tz_name or settings.ALARM_TIMEZONE,
    )

    statement = (
        update(Alarm)
        .where(
            Alarm.id == alarm.id,
            Alarm.next_trigger_at == observed,
            Alarm.is_active.is_(True),
        )
        .values(
            last_triggered_at=fired_at,
            trigger_count=Alarm.trigger_count + 1,
            next_trigger_at=next_trigger,
            updated_at=current,
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.exec(statement)
    await session.commit()
    if result.rowcount != 1:  # type: ignore[attr-defined]
        return False

    # The scanner hands in detached rows
    session.add(alarm)
    await session.refresh(alarm)
    return True
