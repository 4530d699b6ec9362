"""Per-user push channels for alarm trigger events.

Connections are grouped into one room per user. Every live connection in a
room receives every event for that user; nothing is buffered for connections
that open later. Rooms are released through a debouncer so that a browser
reconnecting (or remounting) does not tear the room down and rebuild it.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set
from uuid import uuid4

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from app.schemas.notification import TriggerEvent
from app.services.channel_tokens import verify_channel_token
from app.services.debounce import DEFAULT_DELAY_SECONDS, DebouncedActionManager

logger = logging.getLogger(__name__)

DEFAULT_SEND_TIMEOUT_SECONDS = 5.0


class ChannelClosedError(Exception):
    """Raised when writing to a connection that has already been closed."""


class ChannelConnection(ABC):
    """A single live client connection registered under one user."""

    def __init__(self) -> None:
        self.connection_id = uuid4().hex[:8]
        self.user_id: Optional[int] = None
        self.closed = False

    async def accept(self) -> None:
        """Called once the channel token is accepted, before registration."""

    @abstractmethod
    async def send_json(self, message: Dict[str, Any]) -> None:
        """Write one JSON message, raising when the peer cannot take it."""

    async def close(self) -> None:
        self.closed = True


class WebSocketConnection(ChannelConnection):
    def __init__(self, websocket: WebSocket) -> None:
        super().__init__()
        self.websocket = websocket

    async def accept(self) -> None:
        await self.websocket.accept()

    async def send_json(self, message: Dict[str, Any]) -> None:
        if self.closed:
            raise ChannelClosedError(self.connection_id)
        await self.websocket.send_json(message)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if WebSocketState.DISCONNECTED in (self.websocket.client_state, self.websocket.application_state):
            return
        # The peer may go away while the close frame is sent
        with suppress(RuntimeError):
            await self.websocket.close()


_STREAM_END = object()


class StreamConnection(ChannelConnection):
    """Server-Sent Events connection backed by a bounded in-memory queue."""

    def __init__(self, max_queue: int = 100) -> None:
        super().__init__()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)

    async def send_json(self, message: Dict[str, Any]) -> None:
        if self.closed:
            raise ChannelClosedError(self.connection_id)
        # A full queue means the client stopped reading; the manager drops it
        self._queue.put_nowait(message)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        with suppress(asyncio.QueueFull):
            self._queue.put_nowait(_STREAM_END)

    async def events(self, heartbeat_seconds: float) -> AsyncIterator[str]:
        """Yield SSE frames until the connection is closed."""
        yield "event: connected\ndata: true\n\n"
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=heartbeat_seconds)
            except asyncio.TimeoutError:
                if self.closed:
                    return
                yield "event: ping\ndata: {}\n\n"
                continue
            if item is _STREAM_END:
                return
            yield f"event: alarm\ndata: {json.dumps(item)}\n\n"


@dataclass
class _Room:
    connections: Set[ChannelConnection] = field(default_factory=set)
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PushChannelManager:
    def __init__(
        self,
        *,
        release_delay: float = DEFAULT_DELAY_SECONDS,
        send_timeout: float = DEFAULT_SEND_TIMEOUT_SECONDS,
    ) -> None:
        self._rooms: Dict[int, _Room] = {}
        self._lock = asyncio.Lock()
        self._releases: DebouncedActionManager[int] = DebouncedActionManager(release_delay)
        self._send_timeout = send_timeout

    async def open(self, token: str, connection: ChannelConnection) -> ChannelConnection:
        """Authorize ``connection`` with a channel token and register it.

        Raises ``InvalidChannelTokenError`` or ``ExpiredChannelTokenError``
        without touching the connection when the token is refused.
        """
        user_id = verify_channel_token(token)
        await connection.accept()
        await self.register(user_id, connection)
        return connection

    async def register(self, user_id: int, connection: ChannelConnection) -> None:
        async with self._lock:
            if self._releases.cancel(user_id):
                logger.debug("Room release for user %s cancelled by reconnect", user_id)
            room = self._rooms.get(user_id)
            if room is None:
                room = self._rooms[user_id] = _Room()
                logger.info("Opened alarm room for user %s", user_id)
            room.connections.add(connection)
            connection.user_id = user_id
        logger.info(
            "Channel %s registered for user %s (%d live)",
            connection.connection_id,
            user_id,
            len(room.connections),
        )

    async def close(self, connection: ChannelConnection) -> None:
        user_id = connection.user_id
        if user_id is not None:
            async with self._lock:
                room = self._rooms.get(user_id)
                if room is not None and connection in room.connections:
                    room.connections.discard(connection)
                    logger.info("Channel %s closed for user %s", connection.connection_id, user_id)
                    if not room.connections:
                        self._releases.schedule(user_id, lambda: self._release_room(user_id))
        await connection.close()

    async def deliver(self, event: TriggerEvent) -> int:
        """Send ``event`` to every live connection of its user; returns the number reached."""
        async with self._lock:
            room = self._rooms.get(event.user_id)
            connections = list(room.connections) if room else []

        if not connections:
            logger.debug("No live channel for user %s; event dropped", event.user_id)
            return 0

        message = event.to_wire()
        delivered = 0
        for connection in connections:
            try:
                await asyncio.wait_for(connection.send_json(message), timeout=self._send_timeout)
            except Exception:
                logger.warning(
                    "Delivery to channel %s of user %s failed; closing it",
                    connection.connection_id,
                    event.user_id,
                    exc_info=True,
                )
                await self.close(connection)
            else:
                delivered += 1
        return delivered

    def connection_count(self, user_id: int) -> int:
        room = self._rooms.get(user_id)
        return len(room.connections) if room else 0

    def channel_status(self, user_id: int) -> Dict[str, Any]:
        room = self._rooms.get(user_id)
        return {
            "user_id": user_id,
            "connections": len(room.connections) if room else 0,
            "room_open": room is not None,
            "pending_release": self._releases.is_pending(user_id),
            "opened_at": room.opened_at if room else None,
        }

    async def shutdown(self) -> None:
        self._releases.cancel_all()
        async with self._lock:
            connections = [conn for room in self._rooms.values() for conn in room.connections]
            self._rooms.clear()
        for connection in connections:
            await connection.close()
        logger.info("Push channel manager shut down (%d channel(s) closed)", len(connections))

    async def _release_room(self, user_id: int) -> None:
        async with self._lock:
            room = self._rooms.get(user_id)
            if room is None:
                return
            if room.connections:
                logger.debug("Room for user %s kept: new channel joined", user_id)
                return
            del self._rooms[user_id]
        logger.info("Released alarm room for user %s", user_id)
