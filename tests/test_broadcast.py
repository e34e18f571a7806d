"""
Tests for WebSocket fan-out and simulated delivery.
"""
import asyncio
import json
import threading
from unittest.mock import AsyncMock

import chathook.services.delivery as delivery_module
from chathook.models.message import MessageStatus
from chathook.services.broadcast import INBOX_ROOM, ConnectionManager, WebSocketMessage
from chathook.services.delivery import simulate_delivery
from chathook.services.events import MessageDeleted, StatusChanged


def make_socket():
    socket = AsyncMock()
    socket.send_text = AsyncMock()
    return socket


def sent_frames(socket):
    return [json.loads(call.args[0]) for call in socket.send_text.await_args_list]


class TestConnectionManager:
    """Tests for room membership and fan-out."""

    def test_connect_joins_inbox(self):
        manager = ConnectionManager()
        socket = make_socket()
        asyncio.run(manager.connect(socket))

        socket.accept.assert_awaited_once()
        assert manager.rooms_for(socket) == {INBOX_ROOM}
        assert manager.connection_count == 1

    def test_room_fan_out(self):
        manager = ConnectionManager()
        inbox_viewer, room_viewer, other_viewer = make_socket(), make_socket(), make_socket()

        async def scenario():
            await manager.join(inbox_viewer, INBOX_ROOM)
            await manager.join(room_viewer, "555")
            await manager.join(other_viewer, "777")
            return await manager.publish(MessageDeleted(conversation_key="555", message_id="m1"))

        delivered = asyncio.run(scenario())

        assert delivered == 2
        assert sent_frames(room_viewer)[0]["event"] == "message:deleted"
        assert sent_frames(inbox_viewer)[0]["data"] == {"message_id": "m1", "conversation_key": "555"}
        other_viewer.send_text.assert_not_awaited()

    def test_each_connection_gets_a_frame_once(self):
        manager = ConnectionManager()
        socket = make_socket()

        async def scenario():
            await manager.join(socket, INBOX_ROOM)
            await manager.join(socket, "555")
            await manager.publish(MessageDeleted(conversation_key="555", message_id="m1"))

        asyncio.run(scenario())
        assert socket.send_text.await_count == 1

    def test_dead_connection_is_dropped(self):
        manager = ConnectionManager()
        dead = make_socket()
        dead.send_text.side_effect = RuntimeError("closed")

        async def scenario():
            await manager.join(dead, INBOX_ROOM)
            return await manager.publish(MessageDeleted(conversation_key="1", message_id="m"))

        assert asyncio.run(scenario()) == 0
        assert manager.connection_count == 0

    def test_leave(self):
        manager = ConnectionManager()
        socket = make_socket()

        async def scenario():
            await manager.join(socket, "555")
            await manager.leave(socket, "555")

        asyncio.run(scenario())
        assert manager.rooms_for(socket) == set()

    def test_publish_all_keeps_order(self):
        manager = ConnectionManager()
        socket = make_socket()
        events = [
            MessageDeleted(conversation_key="1", message_id="a"),
            StatusChanged(conversation_key="1", identifier_echo="b", new_status=MessageStatus.READ, message_id="b"),
        ]

        async def scenario():
            await manager.join(socket, INBOX_ROOM)
            await manager.publish_all(events)

        asyncio.run(scenario())
        assert [frame["event"] for frame in sent_frames(socket)] == ["message:deleted", "message:status_update"]

    def test_frame_shape(self):
        frame = json.loads(WebSocketMessage(event="pong", data={}).to_json())
        assert set(frame) == {"event", "data", "timestamp"}


class TestSimulateDelivery:
    """Tests for the simulated delivery task."""

    def test_marks_delivered_and_publishes(self, repository):
        message = repository.insert({"conversation_key": "555", "content": "hi", "status": "sent"})
        manager = ConnectionManager()
        socket = make_socket()

        async def scenario():
            await manager.join(socket, "555")
            await simulate_delivery(message.id, 0, manager)

        asyncio.run(scenario())

        repository.refresh(message)
        assert message.status == "delivered"
        assert message.delivered_at is not None
        frame = sent_frames(socket)[0]
        assert frame["event"] == "message:status_update"
        assert frame["data"]["status"] == "delivered"

    def test_already_read_is_left_alone(self, repository):
        message = repository.insert({"conversation_key": "555", "content": "hi", "status": "read"})
        manager = ConnectionManager()
        socket = make_socket()

        async def scenario():
            await manager.join(socket, "555")
            await simulate_delivery(message.id, 0, manager)

        asyncio.run(scenario())

        repository.refresh(message)
        assert message.status == "read"
        socket.send_text.assert_not_awaited()

    def test_store_work_runs_off_the_event_loop(self, repository, monkeypatch):
        message = repository.insert({"conversation_key": "555", "content": "hi", "status": "sent"})
        original = delivery_module.mark_delivered
        threads = []

        def recording_mark_delivered(message_id):
            threads.append(threading.get_ident())
            return original(message_id)

        monkeypatch.setattr(delivery_module, "mark_delivered", recording_mark_delivered)

        async def scenario():
            await simulate_delivery(message.id, 0, ConnectionManager())
            return threading.get_ident()

        loop_thread = asyncio.run(scenario())

        assert len(threads) == 1
        assert threads[0] != loop_thread
        repository.refresh(message)
        assert message.status == "delivered"

    def test_store_failure_publishes_nothing(self, monkeypatch):
        def failing_mark_delivered(message_id):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(delivery_module, "mark_delivered", failing_mark_delivered)
        manager = ConnectionManager()
        socket = make_socket()

        async def scenario():
            await manager.join(socket, "555")
            await simulate_delivery("missing", 0, manager)

        asyncio.run(scenario())

        socket.send_text.assert_not_awaited()
