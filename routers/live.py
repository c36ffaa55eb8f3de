"""Live channel: one WebSocket per client tab.

Frames in both directions are ``{"event": ..., "data": {...}}``. Every event
a client receives is a hint to refresh; the REST endpoints stay the source of
truth.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError

from db import open_session
from errors import NotAuthorized, ReliefError, ValidationError
from services import chat as chat_service
from services.presence import Connection, chat_room, hub, user_room
from .auth import user_for_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["live"])


def _authenticate(token: Optional[str]) -> Optional[int]:
    with open_session() as session:
        user = user_for_token(session, token)
        return user.id if user else None


def _chat_id(data: dict) -> int:
    try:
        return int(data["chat_id"])
    except (KeyError, TypeError, ValueError):
        raise ValidationError("chat_id is required")


def on_user_join(conn: Connection, data: dict) -> None:
    # the user room is joined on connect; this only re-affirms it
    if data.get("user_id") not in (None, conn.user_id):
        raise NotAuthorized("Cannot join another user's room")
    hub.join(conn, user_room(conn.user_id))
    conn.deliver({"event": "user:joined", "data": {"user_id": conn.user_id}})


def on_chat_join(conn: Connection, data: dict) -> None:
    chat_id = _chat_id(data)
    with open_session() as session:
        chat_service.get_for_participant(session, chat_id, conn.user_id)
    hub.join(conn, chat_room(chat_id))
    conn.deliver({"event": "chat:joined", "data": {"chat_id": chat_id}})


def on_chat_leave(conn: Connection, data: dict) -> None:
    hub.leave(conn, chat_room(_chat_id(data)))


def on_chat_message(conn: Connection, data: dict) -> None:
    with open_session() as session:
        chat_service.send(session, _chat_id(data), conn.user_id, data.get("content"))


def on_chat_typing(conn: Connection, data: dict) -> None:
    with open_session() as session:
        chat_service.signal_typing(
            session, _chat_id(data), conn.user_id, bool(data.get("is_typing")), skip=conn
        )


def on_chat_read(conn: Connection, data: dict) -> None:
    with open_session() as session:
        chat_service.mark_read(session, _chat_id(data), conn.user_id)


HANDLERS: Dict[str, Callable[[Connection, dict], None]] = {
    "user:join": on_user_join,
    "chat:join": on_chat_join,
    "chat:leave": on_chat_leave,
    "chat:message": on_chat_message,
    "chat:typing": on_chat_typing,
    "chat:read": on_chat_read,
}


def _error(conn: Connection, event: Optional[str], message: str) -> None:
    conn.deliver({"event": "error", "data": {"event": event, "message": message}})


async def _dispatch(conn: Connection, frame) -> None:
    if not isinstance(frame, dict):
        _error(conn, None, "Frames must be JSON objects")
        return
    event = frame.get("event")
    data = frame.get("data") or {}
    handler = HANDLERS.get(event)
    if handler is None:
        _error(conn, event, f"Unknown event: {event}")
        return
    if not isinstance(data, dict):
        _error(conn, event, "data must be an object")
        return
    try:
        # handlers touch the database; keep that off the event loop
        await run_in_threadpool(handler, conn, data)
    except ReliefError as exc:
        _error(conn, event, exc.message)
    except SQLAlchemyError:
        logger.exception("%s from user %s failed", event, conn.user_id)
        _error(conn, event, "Internal error, please retry")


@router.websocket("/ws")
async def live(websocket: WebSocket, token: Optional[str] = None):
    token = token or websocket.cookies.get("session")
    user_id = await run_in_threadpool(_authenticate, token)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    conn = Connection(websocket, user_id)
    hub.connect(conn)
    sender = asyncio.create_task(conn.pump())
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                _error(conn, None, "Invalid JSON")
                continue
            await _dispatch(conn, frame)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(conn)
        sender.cancel()
