"""Persisted notifications with a live ``notification:new`` push.

Each kind of notification is its own payload class; ``stage`` only accepts
those, so adding a kind means adding a class here.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Union

from sqlalchemy import func, update
from sqlmodel import Session, select

from errors import NotFound
from models import Notification, NotificationKind
from schemas import NotificationRead
from .presence import hub, user_room

logger = logging.getLogger(__name__)

LIST_LIMIT = 50


@dataclass(frozen=True)
class NewRequest:
    request_id: int
    request_type: str
    requester_name: str

    kind = NotificationKind.new_request

    def render(self) -> str:
        return f"New {self.request_type} request from {self.requester_name}"


@dataclass(frozen=True)
class RequestAccepted:
    request_id: int
    request_type: str
    volunteer_name: str

    kind = NotificationKind.request_accepted

    def render(self) -> str:
        return f"{self.volunteer_name} accepted your {self.request_type} request"


@dataclass(frozen=True)
class RequestCompleted:
    request_id: int
    actor_name: str
    confirmed: bool
    points: int = 0

    kind = NotificationKind.request_completed

    def render(self) -> str:
        if self.confirmed:
            return f"{self.actor_name} confirmed completion! You earned {self.points} points!"
        return f"{self.actor_name} marked your request as complete. Please confirm."


@dataclass(frozen=True)
class DonationReceived:
    request_id: int
    donor_name: str
    amount: Decimal

    kind = NotificationKind.donation_received

    def render(self) -> str:
        return f"{self.donor_name} donated {self.amount:,.2f}"


NotificationEvent = Union[NewRequest, RequestAccepted, RequestCompleted, DonationReceived]


def stage(session: Session, user_id: int, event: NotificationEvent) -> Notification:
    """Add the notification to the caller's transaction without committing."""
    notification = Notification(
        user_id=user_id,
        kind=event.kind,
        message=event.render(),
        related_request_id=event.request_id,
    )
    session.add(notification)
    return notification


def push(notification: Notification) -> None:
    room = user_room(notification.user_id)
    if not hub.members(room):
        return
    payload = NotificationRead.model_validate(notification).model_dump(mode="json")
    hub.emit(room, "notification:new", payload)


def notify(session: Session, user_id: int, event: NotificationEvent) -> Notification:
    notification = stage(session, user_id, event)
    session.commit()
    session.refresh(notification)
    push(notification)
    return notification


def list_for(session: Session, user_id: int) -> List[Notification]:
    stmt = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(LIST_LIMIT)
    )
    return list(session.exec(stmt).all())


def unread_count(session: Session, user_id: int) -> int:
    stmt = select(func.count()).select_from(Notification).where(
        Notification.user_id == user_id,
        Notification.is_read == False,  # noqa: E712
    )
    return session.exec(stmt).one()


def _owned(session: Session, notification_id: int, user_id: int) -> Notification:
    notification = session.get(Notification, notification_id)
    # another user's notification looks the same as a missing one
    if notification is None or notification.user_id != user_id:
        raise NotFound("Notification not found")
    return notification


def mark_read(session: Session, notification_id: int, user_id: int) -> Notification:
    notification = _owned(session, notification_id, user_id)
    notification.is_read = True
    session.add(notification)
    session.commit()
    session.refresh(notification)
    return notification


def mark_all_read(session: Session, user_id: int) -> int:
    result = session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
        .values(is_read=True)
    )
    session.commit()
    return result.rowcount


def delete(session: Session, notification_id: int, user_id: int) -> None:
    notification = _owned(session, notification_id, user_id)
    session.delete(notification)
    session.commit()
