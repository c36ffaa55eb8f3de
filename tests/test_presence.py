import asyncio

import pytest

from services import presence
from services.presence import Connection, PresenceHub, chat_room, user_room


class Recorder:
    def __init__(self, user_id: int, fail: bool = False):
        self.user_id = user_id
        self.rooms = set()
        self.frames = []
        self.fail = fail

    def deliver(self, frame: dict) -> None:
        if self.fail:
            raise RuntimeError("Event loop is closed")
        self.frames.append(frame)


class TestRooms:
    def test_connect_joins_user_room(self) -> None:
        hub = PresenceHub()
        conn = Recorder(5)
        hub.connect(conn)
        assert hub.members(user_room(5)) == [conn]
        assert hub.is_online(5)
        assert not hub.is_online(6)

    def test_emit_reaches_every_member(self) -> None:
        hub = PresenceHub()
        phone, laptop = Recorder(5), Recorder(5)
        hub.connect(phone)
        hub.connect(laptop)

        assert hub.emit(user_room(5), "notification:new", {"id": 1}) == 2
        assert phone.frames == [{"event": "notification:new", "data": {"id": 1}}]
        assert laptop.frames == phone.frames

    def test_emit_to_empty_room(self) -> None:
        assert PresenceHub().emit(chat_room(3), "chat:message", {}) == 0

    def test_leave_stops_delivery(self) -> None:
        hub = PresenceHub()
        conn = Recorder(5)
        hub.join(conn, chat_room(3))
        hub.leave(conn, chat_room(3))
        hub.emit(chat_room(3), "chat:message", {})
        assert conn.frames == []
        assert conn.rooms == set()

    def test_disconnect_leaves_all_rooms(self) -> None:
        hub = PresenceHub()
        conn = Recorder(5)
        hub.connect(conn)
        hub.join(conn, chat_room(3))
        hub.join(conn, chat_room(4))
        hub.disconnect(conn)
        assert hub.members(user_room(5)) == []
        assert hub.members(chat_room(3)) == []
        assert not hub.is_online(5)

    def test_skip_excludes_one_connection(self) -> None:
        hub = PresenceHub()
        sender, other = Recorder(5), Recorder(6)
        hub.join(sender, chat_room(3))
        hub.join(other, chat_room(3))
        assert hub.emit(chat_room(3), "chat:typing", {"user_id": 5}, skip=sender) == 1
        assert sender.frames == []
        assert len(other.frames) == 1

    def test_failing_connection_does_not_block_others(self) -> None:
        hub = PresenceHub()
        broken, healthy = Recorder(5, fail=True), Recorder(6)
        hub.join(broken, chat_room(3))
        hub.join(healthy, chat_room(3))
        assert hub.emit(chat_room(3), "chat:message", {}) == 1
        assert len(healthy.frames) == 1

    def test_reset(self) -> None:
        hub = PresenceHub()
        hub.connect(Recorder(5))
        hub.reset()
        assert not hub.is_online(5)


class ClosedSocket:
    def __init__(self):
        self.attempts = 0

    async def send_json(self, frame: dict) -> None:
        self.attempts += 1
        raise RuntimeError('Cannot call "send" once a close message has been sent.')


class TestSender:
    @pytest.fixture(autouse=True)
    def clean_hub(self):
        presence.hub.reset()
        yield
        presence.hub.reset()

    def test_send_failure_leaves_every_room(self) -> None:
        socket = ClosedSocket()

        async def run() -> Connection:
            conn = Connection(socket, 5, loop=asyncio.get_running_loop())
            presence.hub.connect(conn)
            presence.hub.join(conn, chat_room(3))
            conn.queue.put_nowait({"event": "chat:message", "data": {}})
            await asyncio.wait_for(conn.pump(), timeout=1)
            return conn

        conn = asyncio.run(run())
        assert socket.attempts == 1
        assert conn.rooms == set()
        assert not presence.hub.is_online(5)
        assert presence.hub.emit(chat_room(3), "chat:message", {}) == 0
