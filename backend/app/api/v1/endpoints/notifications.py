from datetime import datetime, timezone
from typing import Annotated, Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse

from app.api.deps import ChannelsDep, CurrentUserId
from app.core.config import settings
from app.core.rate_limit import limiter
from app.models.alarm import AlarmKind
from app.schemas.notification import (
    AlarmTriggerData,
    ChannelStatusResponse,
    DeliveryResponse,
    SampleTriggerRequest,
    TriggerEvent,
)
from app.schemas.token import ChannelTokenResponse
from app.services.channel_tokens import (
    ExpiredChannelTokenError,
    InvalidChannelTokenError,
    issue_channel_token,
)
from app.services.realtime import StreamConnection

router = APIRouter()

SAMPLE_ALARM_ID = 0
SAMPLE_MESSAGE = "This is a test alarm"


@router.post("/channel-token", response_model=ChannelTokenResponse)
@limiter.limit(settings.CHANNEL_TOKEN_RATE_LIMIT)
async def create_channel_token(request: Request, user_id: CurrentUserId) -> ChannelTokenResponse:
    issued = issue_channel_token(user_id)
    return ChannelTokenResponse(
        token=issued.token,
        expires_in=issued.expires_in,
        expires_at=issued.expires_at,
    )


@router.get("/stream")
async def stream_alarms(
    request: Request,
    channels: ChannelsDep,
    token: Optional[str] = Query(default=None),
    header_token: Annotated[Optional[str], Header(alias="X-Channel-Token")] = None,
) -> StreamingResponse:
    raw_token = token or header_token
    if not raw_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing channel token")

    connection = StreamConnection(max_queue=settings.CHANNEL_QUEUE_SIZE)
    try:
        await channels.open(raw_token, connection)
    except ExpiredChannelTokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Channel token expired") from exc
    except InvalidChannelTokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid channel token") from exc

    async def event_stream():
        try:
            async for frame in connection.events(settings.CHANNEL_HEARTBEAT_SECONDS):
                if await request.is_disconnected():
                    break
                yield frame
        finally:
            await channels.close(connection)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache, no-transform", "X-Accel-Buffering": "no"},
    )


@router.post("/test", response_model=DeliveryResponse)
async def send_test_notification(
    user_id: CurrentUserId,
    channels: ChannelsDep,
    payload: Optional[SampleTriggerRequest] = None,
) -> DeliveryResponse:
    title = payload.title if payload else SampleTriggerRequest().title
    event = TriggerEvent(
        data=AlarmTriggerData(
            alarm_id=SAMPLE_ALARM_ID,
            user_id=user_id,
            title=title,
            message=SAMPLE_MESSAGE,
            timestamp=datetime.now(timezone.utc),
            kind=AlarmKind.repeat,
        )
    )
    delivered = await channels.deliver(event)
    return DeliveryResponse(delivered=delivered)


@router.get("/channels/status", response_model=ChannelStatusResponse)
async def channel_status(user_id: CurrentUserId, channels: ChannelsDep) -> ChannelStatusResponse:
    return ChannelStatusResponse(**channels.channel_status(user_id))
