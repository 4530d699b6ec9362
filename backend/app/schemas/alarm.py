import json
from datetime import date, datetime, time
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.alarm import AlarmKind


def normalize_repeat_days(value: Any) -> list[int]:
    """Coerce stored repeat days into a sorted list of unique weekday numbers.

    Accepts a list or a JSON-encoded list (as older rows store it). Anything
    that is not an integer in 0-6 is dropped, so a malformed value simply
    yields an empty schedule.
    """
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
    if not isinstance(value, (list, tuple, set)):
        return []
    days = {
        day
        for day in value
        if isinstance(day, int) and not isinstance(day, bool) and 0 <= day <= 6
    }
    return sorted(days)


class AlarmSchedule(BaseModel):
    """The schedule-relevant fields of an alarm, detached from the database row."""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    kind: AlarmKind
    time_of_day: time
    scheduled_date: Optional[date] = None
    repeat_days: list[int] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    last_triggered_at: Optional[datetime] = None

    @field_validator("repeat_days", mode="before")
    @classmethod
    def parse_repeat_days(cls, value: Any) -> list[int]:
        return normalize_repeat_days(value)

    @classmethod
    def from_alarm(cls, alarm: Any) -> "AlarmSchedule":
        return cls.model_validate(alarm)
