import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from app.db.session import AsyncSessionLocal
from app.models.alarm import Alarm, AlarmKind, AlarmSource
from app.schemas.notification import AlarmTriggerData, ReminderTriggerData, TriggerEvent
from app.services import trigger_store
from app.services.realtime import PushChannelManager
from app.services.recurrence import ensure_timezone, seconds_until

logger = logging.getLogger(__name__)

DEFAULT_ALARM_TITLE = "Alarm"
DEFAULT_REMINDER_TITLE = "Reminder"


def build_trigger_event(alarm: Alarm, *, fired_at: datetime) -> TriggerEvent:
    """Build the event pushed for one fired occurrence of ``alarm``."""
    common = {
        "user_id": alarm.user_id,
        "message": alarm.message or "",
        "timestamp": ensure_timezone(fired_at),
        "kind": AlarmKind(alarm.kind),
    }
    if AlarmSource(alarm.source) == AlarmSource.reminder:
        data = ReminderTriggerData(
            reminder_id=alarm.reminder_id,
            title=alarm.title or DEFAULT_REMINDER_TITLE,
            **common,
        )
    else:
        data = AlarmTriggerData(
            alarm_id=alarm.id,
            title=alarm.title or DEFAULT_ALARM_TITLE,
            **common,
        )
    return TriggerEvent(data=data)


async def process_due_alarms(
    session: AsyncSession,
    channels: PushChannelManager,
    *,
    now: Optional[datetime] = None,
) -> int:
    """Fire every alarm that is due at ``now``; returns how many occurrences fired."""
    current = ensure_timezone(now) if now is not None else datetime.now(timezone.utc)
    due = await trigger_store.list_due_alarms(session, now=current)
    if not due:
        logger.debug("No alarms due at %s", current.isoformat())
        return 0
    # Rows stay usable after a rollback further down the batch
    session.expunge_all()

    fired = 0
    for alarm in due:
        alarm_id = alarm.id
        fired_at = ensure_timezone(alarm.next_trigger_at)
        try:
            recorded = await trigger_store.record_trigger(session, alarm=alarm, now=current)
        except SQLAlchemyError:
            logger.exception("Failed to record trigger for alarm %s; retrying next cycle", alarm_id)
            await session.rollback()
            continue
        if not recorded:
            logger.info("Alarm %s was already handled by another scanner; skipping", alarm_id)
            continue

        fired += 1
        event = build_trigger_event(alarm, fired_at=fired_at)
        delivered = await channels.deliver(event)
        logger.info(
            "Alarm %s fired for user %s at %s, %ds late (delivered to %d channel(s), next %s)",
            alarm_id,
            alarm.user_id,
            fired_at.isoformat(),
            -seconds_until(fired_at, current),
            delivered,
            alarm.next_trigger_at,
        )
    return fired


async def run_alarm_scan(channels: PushChannelManager) -> int:
    async with AsyncSessionLocal() as session:
        return await process_due_alarms(session, channels)
