"""Per-request conversation between the requester and the accepted volunteer.

Messages are always written to the database first; the ``chat:message``
push is a convenience for connected clients and REST clients polling
``messages`` see the same sequence.
"""

import logging
import threading
import time
from typing import Dict, List, Optional

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from errors import NotAuthorized, NotAvailable, NotFound, ValidationError
from models import Chat, Message, Request, utcnow
from schemas import MessageRead
from .presence import chat_room, hub

logger = logging.getLogger(__name__)

TYPING_TTL_SECONDS = 3.0


def open_chat(session: Session, request_id: int, caller_id: int) -> Chat:
    request = session.get(Request, request_id)
    if request is None:
        raise NotFound("Request not found")
    if caller_id not in (request.requester_id, request.volunteer_id):
        raise NotAuthorized("You are not authorized to access this chat")

    chat = session.exec(select(Chat).where(Chat.request_id == request_id)).first()
    if chat is not None:
        return chat
    if request.volunteer_id is None:
        raise NotAvailable("Chat not available. Request must be accepted first.")

    chat = Chat(
        request_id=request.id,
        requester_id=request.requester_id,
        volunteer_id=request.volunteer_id,
    )
    session.add(chat)
    try:
        session.commit()
    except IntegrityError:
        # the other participant opened it first
        session.rollback()
        return session.exec(select(Chat).where(Chat.request_id == request_id)).one()
    session.refresh(chat)
    logger.info("chat %s opened for request %s", chat.id, request_id)
    return chat


def get_for_participant(session: Session, chat_id: int, user_id: int) -> Chat:
    chat = session.get(Chat, chat_id)
    if chat is None:
        raise NotFound("Chat not found")
    if not chat.has_participant(user_id):
        raise NotAuthorized("You are not authorized to access this chat")
    return chat


def send(session: Session, chat_id: int, sender_id: int, content: Optional[str]) -> Message:
    chat = get_for_participant(session, chat_id, sender_id)
    if content is None or not content.strip():
        raise ValidationError("Message content is required")

    message = Message(chat_id=chat.id, sender_id=sender_id, content=content.strip(), created_at=utcnow())
    chat.last_message_content = message.content
    chat.last_message_sender_id = sender_id
    chat.last_message_at = message.created_at
    session.add(message)
    session.add(chat)
    session.commit()
    session.refresh(message)

    typing_tracker.record(chat.id, sender_id, False)
    payload = MessageRead.model_validate(message).model_dump(mode="json")
    hub.emit(chat_room(chat.id), "chat:message", {"chat_id": chat.id, "message": payload})
    return message


def mark_read(session: Session, chat_id: int, reader_id: int) -> int:
    chat = get_for_participant(session, chat_id, reader_id)
    result = session.execute(
        update(Message)
        .where(
            Message.chat_id == chat.id,
            Message.sender_id != reader_id,
            Message.is_read == False,  # noqa: E712
        )
        .values(is_read=True, read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    session.commit()
    count = result.rowcount
    hub.emit(chat_room(chat.id), "chat:read", {"chat_id": chat.id, "read_by": reader_id, "count": count})
    return count


def messages(session: Session, chat_id: int, user_id: int, after_id: Optional[int] = None) -> List[Message]:
    chat = get_for_participant(session, chat_id, user_id)
    stmt = select(Message).where(Message.chat_id == chat.id)
    if after_id is not None:
        stmt = stmt.where(Message.id > after_id)
    return list(session.exec(stmt.order_by(Message.id)).all())


def list_for(session: Session, user_id: int) -> List[Chat]:
    stmt = (
        select(Chat)
        .where(
            or_(Chat.requester_id == user_id, Chat.volunteer_id == user_id),
            Chat.is_active == True,  # noqa: E712
        )
        .order_by(Chat.last_message_at.desc(), Chat.id.desc())
    )
    return list(session.exec(stmt).all())


def unread_count(session: Session, user_id: int) -> int:
    stmt = (
        select(func.count(Message.id))
        .join(Chat, Chat.id == Message.chat_id)
        .where(
            or_(Chat.requester_id == user_id, Chat.volunteer_id == user_id),
            Chat.is_active == True,  # noqa: E712
            Message.sender_id != user_id,
            Message.is_read == False,  # noqa: E712
        )
    )
    return session.exec(stmt).one()


class TypingTracker:
    """Who is typing where. A ``True`` signal lapses after the TTL."""

    def __init__(self, ttl: float = TYPING_TTL_SECONDS, clock=time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._lock = threading.Lock()
        self._since: Dict[int, Dict[int, float]] = {}

    def record(self, chat_id: int, user_id: int, is_typing: bool) -> None:
        with self._lock:
            users = self._since.setdefault(chat_id, {})
            if is_typing:
                users[user_id] = self.clock()
            else:
                users.pop(user_id, None)
                if not users:
                    del self._since[chat_id]

    def active(self, chat_id: int) -> List[int]:
        now = self.clock()
        with self._lock:
            users = self._since.get(chat_id, {})
            return sorted(uid for uid, since in users.items() if now - since < self.ttl)

    def reset(self) -> None:
        with self._lock:
            self._since.clear()


typing_tracker = TypingTracker()


def signal_typing(session: Session, chat_id: int, user_id: int, is_typing: bool, skip=None) -> None:
    chat = get_for_participant(session, chat_id, user_id)
    typing_tracker.record(chat.id, user_id, is_typing)
    hub.emit(
        chat_room(chat.id),
        "chat:typing",
        {"chat_id": chat.id, "user_id": user_id, "is_typing": is_typing, "expires_in": TYPING_TTL_SECONDS},
        skip=skip,
    )


def typing_users(session: Session, chat_id: int, user_id: int) -> List[int]:
    chat = get_for_participant(session, chat_id, user_id)
    return [uid for uid in typing_tracker.active(chat.id) if uid != user_id]
