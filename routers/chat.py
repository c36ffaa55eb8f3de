import logging
from typing import Optional

from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError

from db import SessionDep
from schemas import ChatRead, MessageCreate, MessageRead
from services import chat as chat_service
from .auth import CurrentUserDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


def _chat(chat) -> dict:
    return ChatRead.model_validate(chat).model_dump(mode="json")


def _message(message) -> dict:
    return MessageRead.model_validate(message).model_dump(mode="json")


@router.get("/")
def list_chats(session: SessionDep, current: CurrentUserDep):
    try:
        data = [_chat(c) for c in chat_service.list_for(session, current.id)]
    except SQLAlchemyError:
        logger.warning("listing chats for user %s failed", current.id, exc_info=True)
        return {"success": False, "message": "Could not load chats", "count": 0, "data": []}
    return {"success": True, "count": len(data), "data": data}


@router.get("/unread-count")
def unread_count(session: SessionDep, current: CurrentUserDep):
    return {"success": True, "unread_count": chat_service.unread_count(session, current.id)}


@router.get("/request/{request_id}")
def get_or_create_chat(request_id: int, session: SessionDep, current: CurrentUserDep):
    """
    Chat for a request, created on first access once a volunteer has accepted.
    Only the requester and the volunteer may open it.
    """
    chat = chat_service.open_chat(session, request_id, current.id)
    messages = chat_service.messages(session, chat.id, current.id)
    data = _chat(chat)
    data["messages"] = [_message(m) for m in messages]
    return {"success": True, "data": data}


@router.get("/{chat_id}/messages")
def list_messages(chat_id: int, session: SessionDep, current: CurrentUserDep, after: Optional[int] = None):
    """
    Messages in send order. Pass ``after`` (a message id) to poll for new ones.
    """
    messages = chat_service.messages(session, chat_id, current.id, after_id=after)
    data = [_message(m) for m in messages]
    return {"success": True, "count": len(data), "data": data}


@router.post("/{chat_id}/messages", status_code=201)
def send_message(chat_id: int, body: MessageCreate, session: SessionDep, current: CurrentUserDep):
    message = chat_service.send(session, chat_id, current.id, body.content)
    return {"success": True, "data": _message(message)}


@router.put("/{chat_id}/read")
def mark_read(chat_id: int, session: SessionDep, current: CurrentUserDep):
    count = chat_service.mark_read(session, chat_id, current.id)
    return {"success": True, "message": "Messages marked as read", "count": count}


@router.get("/{chat_id}/typing")
def who_is_typing(chat_id: int, session: SessionDep, current: CurrentUserDep):
    return {"success": True, "data": chat_service.typing_users(session, chat_id, current.id)}
