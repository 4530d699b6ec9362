from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from app.models.alarm import AlarmKind

TRIGGER_EVENT_TYPE = "ALARM_TRIGGER"


class _TriggerDataBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    user_id: int = Field(serialization_alias="userId")
    title: str
    message: str
    timestamp: datetime
    kind: AlarmKind


class AlarmTriggerData(_TriggerDataBase):
    source: Literal["alarm"] = Field(default="alarm", exclude=True)
    alarm_id: int = Field(serialization_alias="alarmId")


class ReminderTriggerData(_TriggerDataBase):
    source: Literal["reminder"] = Field(default="reminder", exclude=True)
    reminder_id: int = Field(serialization_alias="reminderId")


TriggerData = Annotated[
    Union[AlarmTriggerData, ReminderTriggerData],
    Field(discriminator="source"),
]


class TriggerEvent(BaseModel):
    """Message pushed to every live channel of the owning user when an alarm fires."""
    model_config = ConfigDict(frozen=True)

    type: Literal["ALARM_TRIGGER"] = TRIGGER_EVENT_TYPE
    data: TriggerData

    @property
    def user_id(self) -> int:
        return self.data.user_id

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class DeliveryResponse(BaseModel):
    delivered: int


class ChannelStatusResponse(BaseModel):
    user_id: int
    connections: int
    room_open: bool
    pending_release: bool
    opened_at: datetime | None = None


class SampleTriggerRequest(BaseModel):
    title: str = Field(default="Test alarm", min_length=1, max_length=255)
