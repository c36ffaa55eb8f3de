"""Live connection membership and event fan-out.

A connection joins ``user:<id>`` when it authenticates and ``chat:<id>``
after the chat has been opened for that user. Nothing else is held on the
server: a client that reconnects simply joins its rooms again.

``emit`` may be called from the event loop or from a worker thread (sync
FastAPI routes run in a thread pool). Every connection owns a queue that is
drained by its own sender task, so emitting never awaits a socket.
"""

import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


def chat_room(chat_id: int) -> str:
    return f"chat:{chat_id}"


class Connection:
    """One authenticated socket."""

    def __init__(
        self,
        websocket: WebSocket,
        user_id: int,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.websocket = websocket
        self.user_id = user_id
        self.loop = loop or asyncio.get_running_loop()
        self.queue: asyncio.Queue = asyncio.Queue()
        self.rooms: Set[str] = set()

    def deliver(self, frame: dict) -> None:
        self.loop.call_soon_threadsafe(self.queue.put_nowait, frame)

    async def pump(self) -> None:
        while True:
            frame = await self.queue.get()
            try:
                await self.websocket.send_json(frame)
            except (WebSocketDisconnect, RuntimeError):
                logger.info("socket for user %s closed while sending %s", self.user_id, frame["event"])
                hub.disconnect(self)
                return


class PresenceHub:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rooms: Dict[str, Set[Any]] = {}

    def join(self, conn, room: str) -> None:
        with self._lock:
            self._rooms.setdefault(room, set()).add(conn)
            conn.rooms.add(room)

    def leave(self, conn, room: str) -> None:
        with self._lock:
            self._discard(conn, room)

    def connect(self, conn) -> None:
        self.join(conn, user_room(conn.user_id))
        logger.info("user %s connected", conn.user_id)

    def disconnect(self, conn) -> None:
        with self._lock:
            for room in list(conn.rooms):
                self._discard(conn, room)
        logger.info("user %s disconnected", conn.user_id)

    def _discard(self, conn, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(conn)
            if not members:
                del self._rooms[room]
        conn.rooms.discard(room)

    def members(self, room: str) -> List[Any]:
        with self._lock:
            return list(self._rooms.get(room, ()))

    def is_online(self, user_id: int) -> bool:
        return bool(self.members(user_room(user_id)))

    def emit(self, room: str, event: str, data: dict, skip=None) -> int:
        """Push ``event`` to every connection in ``room``.

        Returns how many connections it was handed to. Failures are logged;
        the durable record of the event lives in the database.
        """
        frame = {"event": event, "data": data}
        delivered = 0
        for conn in self.members(room):
            if conn is skip:
                continue
            try:
                conn.deliver(frame)
                delivered += 1
            except RuntimeError:
                # event loop of a socket that is going away
                logger.warning("dropped %s for user %s in %s", event, conn.user_id, room, exc_info=True)
        return delivered

    def reset(self) -> None:
        with self._lock:
            self._rooms.clear()


hub = PresenceHub()
