import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from app.api.deps import ChannelsDep
from app.services.channel_tokens import ChannelTokenError
from app.services.realtime import WebSocketConnection

router = APIRouter()

logger = logging.getLogger(__name__)

CONNECTED_FRAME = {"type": "CONNECTED"}


@router.websocket("/alarms")
async def websocket_alarms(websocket: WebSocket, channels: ChannelsDep, token: str = Query(...)):
    connection = WebSocketConnection(websocket)
    try:
        await channels.open(token, connection)
    except ChannelTokenError as exc:
        logger.warning("Refused alarm socket: %s", exc)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        await connection.send_json(CONNECTED_FRAME)
        while True:
            # Keep the connection alive by awaiting incoming messages
            await websocket.receive_text()
    except WebSocketDisconnect:
        await channels.close(connection)
    except Exception:
        logger.exception("Alarm socket %s failed", connection.connection_id)
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        await channels.close(connection)
