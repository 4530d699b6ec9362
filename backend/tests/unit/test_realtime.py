"""
Unit tests for the push channel manager and its connection types.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from app.models.alarm import AlarmKind
from app.schemas.notification import AlarmTriggerData, TriggerEvent
from app.services.channel_tokens import InvalidChannelTokenError, issue_channel_token
from app.services.realtime import (
    ChannelClosedError,
    ChannelConnection,
    PushChannelManager,
    StreamConnection,
)

RELEASE_DELAY = 0.05


class RecordingConnection(ChannelConnection):
    """In-memory connection that records what it was sent."""

    def __init__(self, *, fail: bool = False) -> None:
        super().__init__()
        self.accepted = False
        self.fail = fail
        self.messages: list[dict] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise RuntimeError("peer went away")
        self.messages.append(message)


def _event(user_id: int, alarm_id: int = 1) -> TriggerEvent:
    return TriggerEvent(
        data=AlarmTriggerData(
            alarm_id=alarm_id,
            user_id=user_id,
            title="Alarm",
            message="Wake up",
            timestamp=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc),
            kind=AlarmKind.once,
        )
    )


def _token(user_id: int) -> str:
    return issue_channel_token(user_id).token


@pytest.fixture
def manager() -> PushChannelManager:
    return PushChannelManager(release_delay=RELEASE_DELAY, send_timeout=0.5)


@pytest.mark.unit
async def test_open_accepts_and_registers(manager: PushChannelManager):
    connection = RecordingConnection()

    await manager.open(_token(1), connection)

    assert connection.accepted is True
    assert connection.user_id == 1
    assert manager.connection_count(1) == 1


@pytest.mark.unit
async def test_open_with_bad_token_leaves_connection_untouched(manager: PushChannelManager):
    connection = RecordingConnection()

    with pytest.raises(InvalidChannelTokenError):
        await manager.open("not-a-token", connection)

    assert connection.accepted is False
    assert manager.connection_count(1) == 0


@pytest.mark.unit
async def test_every_connection_of_the_user_receives_the_event(manager: PushChannelManager):
    first, second = RecordingConnection(), RecordingConnection()
    await manager.open(_token(1), first)
    await manager.open(_token(1), second)

    delivered = await manager.deliver(_event(1))

    assert delivered == 2
    assert first.messages == second.messages == [_event(1).to_wire()]


@pytest.mark.unit
async def test_events_never_cross_users(manager: PushChannelManager):
    alice, bob = RecordingConnection(), RecordingConnection()
    await manager.open(_token(1), alice)
    await manager.open(_token(2), bob)

    assert await manager.deliver(_event(2)) == 1

    assert alice.messages == []
    assert len(bob.messages) == 1


@pytest.mark.unit
async def test_deliver_without_listeners_reaches_nobody(manager: PushChannelManager):
    assert await manager.deliver(_event(9)) == 0


@pytest.mark.unit
async def test_failing_connection_does_not_affect_others(manager: PushChannelManager):
    broken, healthy = RecordingConnection(fail=True), RecordingConnection()
    await manager.open(_token(1), broken)
    await manager.open(_token(1), healthy)

    delivered = await manager.deliver(_event(1))

    assert delivered == 1
    assert len(healthy.messages) == 1
    assert broken.closed is True
    assert manager.connection_count(1) == 1


@pytest.mark.unit
async def test_close_is_idempotent_and_releases_room_after_delay(manager: PushChannelManager):
    connection = RecordingConnection()
    await manager.open(_token(1), connection)

    await manager.close(connection)
    await manager.close(connection)

    status = manager.channel_status(1)
    assert status["connections"] == 0
    assert status["room_open"] is True
    assert status["pending_release"] is True

    await asyncio.sleep(RELEASE_DELAY * 4)

    status = manager.channel_status(1)
    assert status["room_open"] is False
    assert status["pending_release"] is False


@pytest.mark.unit
async def test_reconnect_within_window_keeps_room(manager: PushChannelManager):
    first = RecordingConnection()
    await manager.open(_token(1), first)
    opened_at = manager.channel_status(1)["opened_at"]
    await manager.close(first)

    second = RecordingConnection()
    await manager.open(_token(1), second)
    await asyncio.sleep(RELEASE_DELAY * 4)

    status = manager.channel_status(1)
    assert status["room_open"] is True
    assert status["pending_release"] is False
    assert status["opened_at"] == opened_at
    assert await manager.deliver(_event(1)) == 1


@pytest.mark.unit
async def test_shutdown_closes_everything(manager: PushChannelManager):
    connections = [RecordingConnection() for _ in range(3)]
    for user_id, connection in enumerate(connections, start=1):
        await manager.open(_token(user_id), connection)

    await manager.shutdown()

    assert all(connection.closed for connection in connections)
    assert manager.connection_count(1) == 0


@pytest.mark.unit
def test_connection_needs_a_transport():
    with pytest.raises(TypeError):
        ChannelConnection()


@pytest.mark.unit
async def test_stream_connection_frames():
    connection = StreamConnection(max_queue=10)
    frames = connection.events(heartbeat_seconds=0.05)

    assert await frames.__anext__() == "event: connected\ndata: true\n\n"

    await connection.send_json({"type": "ALARM_TRIGGER"})
    assert await frames.__anext__() == 'event: alarm\ndata: {"type": "ALARM_TRIGGER"}\n\n'

    assert await frames.__anext__() == "event: ping\ndata: {}\n\n"

    await connection.close()
    with pytest.raises(StopAsyncIteration):
        await frames.__anext__()


@pytest.mark.unit
async def test_stream_connection_rejects_writes_after_close():
    connection = StreamConnection()
    await connection.close()

    with pytest.raises(ChannelClosedError):
        await connection.send_json({})


@pytest.mark.unit
async def test_stalled_stream_is_dropped(manager: PushChannelManager):
    stalled = StreamConnection(max_queue=1)
    await manager.open(_token(1), stalled)

    assert await manager.deliver(_event(1, alarm_id=1)) == 1
    assert await manager.deliver(_event(1, alarm_id=2)) == 0

    assert stalled.closed is True
    assert manager.connection_count(1) == 0
