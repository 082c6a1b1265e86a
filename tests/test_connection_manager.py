import asyncio
from datetime import timedelta

from deskmate.application.websocket.connection_manager import ConnectionManager
from deskmate.application.websocket.schema.events import ErrorCode, StatusEvent
from deskmate.domain.models.agent_state import AgentStatus, session_key


class RecordingWebSocket:
    def __init__(self, fail_on_send: bool = False):
        self.sent = []
        self.accepted = False
        self.closed = False
        self.fail_on_send = fail_on_send

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail_on_send:
            raise RuntimeError("socket gone")
        self.sent.append(data)

    async def close(self, code: int = 1000):
        self.closed = True


def test_rooms_are_scoped_to_user_and_session():
    async def scenario():
        manager = ConnectionManager()
        a, b, c = RecordingWebSocket(), RecordingWebSocket(), RecordingWebSocket()
        id_a = await manager.connect(a)
        id_b = await manager.connect(b)
        id_c = await manager.connect(c)

        room = await manager.bind(id_a, "user-1", "session-1")
        await manager.bind(id_b, "user-1", "session-1")
        await manager.bind(id_c, "user-2", "session-1")

        await manager.broadcast_to_room(room, StatusEvent.create(AgentStatus.THINKING))
        return manager, room, a, b, c, id_a

    manager, room, a, b, c, id_a = asyncio.run(scenario())

    assert room == session_key("user-1", "session-1")
    assert a.accepted
    assert a.sent == [{"type": "agent:status", "payload": {"status": "thinking"}}]
    assert b.sent == a.sent
    assert c.sent == []
    assert manager.get_binding(id_a) == ("user-1", "session-1")


def test_disconnect_releases_binding_and_room():
    async def scenario():
        manager = ConnectionManager()
        ws = RecordingWebSocket()
        connection_id = await manager.connect(ws)
        room = await manager.bind(connection_id, "user-1", "session-1")
        await manager.disconnect(connection_id)
        return manager, ws, connection_id, room

    manager, ws, connection_id, room = asyncio.run(scenario())

    assert ws.closed
    assert manager.get_binding(connection_id) is None
    assert manager.get_room_connections(room) == set()
    assert connection_id not in manager.active_connections


def test_rebinding_moves_connection_between_rooms():
    async def scenario():
        manager = ConnectionManager()
        connection_id = await manager.connect(RecordingWebSocket())
        first = await manager.bind(connection_id, "user-1", "session-1")
        second = await manager.bind(connection_id, "user-1", "session-2")
        return manager, connection_id, first, second

    manager, connection_id, first, second = asyncio.run(scenario())

    assert manager.get_room_connections(first) == set()
    assert manager.get_room_connections(second) == {connection_id}


def test_failed_send_drops_the_connection():
    async def scenario():
        manager = ConnectionManager()
        connection_id = await manager.connect(RecordingWebSocket(fail_on_send=True))
        sent = await manager.send_error(connection_id, ErrorCode.PROCESSING_ERROR, "boom")
        return manager, connection_id, sent

    manager, connection_id, _ = asyncio.run(scenario())
    assert connection_id not in manager.active_connections


def test_error_payload_shape():
    async def scenario():
        manager = ConnectionManager()
        ws = RecordingWebSocket()
        connection_id = await manager.connect(ws)
        await manager.send_error(connection_id, ErrorCode.INVALID_EVENT, "Unknown event type: ping")
        return ws

    ws = asyncio.run(scenario())
    [event] = ws.sent

    assert event["type"] == "error"
    assert event["payload"]["code"] == "INVALID_EVENT"
    assert event["payload"]["message"] == "Unknown event type: ping"
    assert "timestamp" in event["payload"]


def test_sweep_stale_closes_idle_connections():
    async def scenario():
        manager = ConnectionManager()
        idle, busy = RecordingWebSocket(), RecordingWebSocket()
        idle_id = await manager.connect(idle)
        busy_id = await manager.connect(busy)
        manager.connection_metadata[idle_id]["last_activity"] -= timedelta(minutes=10)
        manager.touch(busy_id)
        swept = await manager.sweep_stale(timedelta(minutes=5))
        return manager, swept, idle_id, busy_id, idle

    manager, swept, idle_id, busy_id, idle = asyncio.run(scenario())

    assert swept == [idle_id]
    assert idle.closed
    assert busy_id in manager.active_connections
