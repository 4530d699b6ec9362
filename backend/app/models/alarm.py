from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column, Date, DateTime, Index, String, Time
from sqlmodel import Field, SQLModel


class AlarmKind(str, Enum):
    once = "once"
    repeat = "repeat"


class AlarmSource(str, Enum):
    alarm = "alarm"
    reminder = "reminder"  # Alarm attached to a reminder; events carry reminderId


class Alarm(SQLModel, table=True):
    """A schedulable alarm or reminder alarm and its trigger bookkeeping."""
    __tablename__ = "alarms"
    __table_args__ = (Index("ix_alarms_due", "is_active", "next_trigger_at"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(nullable=False, index=True)
    source: AlarmSource = Field(
        default=AlarmSource.alarm,
        sa_column=Column(String(16), nullable=False, server_default=AlarmSource.alarm.value),
    )
    reminder_id: Optional[int] = Field(default=None, index=True)
    title: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    message: Optional[str] = Field(default=None, sa_column=Column(String(500), nullable=True))
    kind: AlarmKind = Field(sa_column=Column(String(16), nullable=False))
    time_of_day: time = Field(sa_column=Column(Time, nullable=False))
    # Only meaningful for once alarms
    scheduled_date: Optional[date] = Field(default=None, sa_column=Column(Date, nullable=True))
    # Weekday numbers, 0 = Sunday
    repeat_days: list[int] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False, server_default="[]"),
    )
    is_active: bool = Field(default=True, nullable=False)
    next_trigger_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    last_triggered_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    trigger_count: int = Field(default=0, nullable=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
