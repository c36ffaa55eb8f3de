from fastapi import APIRouter, Response
from sqlalchemy.exc import SQLAlchemyError

from db import SessionDep
from schemas import NotificationRead
from services import notifications
from .auth import CurrentUserDep

router = APIRouter(tags=["notifications"])


def _one(notification) -> dict:
    return NotificationRead.model_validate(notification).model_dump(mode="json")


@router.get("/")
def list_notifications(session: SessionDep, current: CurrentUserDep):
    """
    Latest notifications for the current user plus the unread count.
    """
    try:
        data = [_one(n) for n in notifications.list_for(session, current.id)]
        unread = notifications.unread_count(session, current.id)
    except SQLAlchemyError:
        return {"success": False, "message": "Could not load notifications", "unread_count": 0, "data": []}
    return {"success": True, "unread_count": unread, "data": data}


@router.get("/unread-count")
def unread_count(session: SessionDep, current: CurrentUserDep):
    return {"success": True, "unread_count": notifications.unread_count(session, current.id)}


@router.put("/read-all")
def mark_all_read(session: SessionDep, current: CurrentUserDep):
    count = notifications.mark_all_read(session, current.id)
    return {"success": True, "message": "All notifications marked as read", "count": count}


@router.put("/{notification_id}/read")
def mark_read(notification_id: int, session: SessionDep, current: CurrentUserDep):
    notification = notifications.mark_read(session, notification_id, current.id)
    return {"success": True, "data": _one(notification)}


@router.delete("/{notification_id}", status_code=204)
def delete_notification(notification_id: int, session: SessionDep, current: CurrentUserDep):
    notifications.delete(session, notification_id, current.id)
    return Response(status_code=204)
