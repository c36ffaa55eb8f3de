"""Request lifecycle: open -> accepted -> completed, or cancelled.

Every transition is one conditional UPDATE keyed on the status the request
must still be in. Reading the row first is only used to produce a precise
error; the UPDATE's row count decides whether the transition happened, so
two volunteers accepting at the same instant cannot both win.

Request fields and the notifications they cause are committed together.
Live pushes go out after the commit and are best effort.
"""

import logging
import math
import os
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from errors import Conflict, InvalidTransition, NotAuthorized, NotFound, SelfAcceptError, ValidationError
from models import Notification, Request, RequestStatus, RequestType, Urgency, User, utcnow
from schemas import RequestCreate, RequestRead, RequestUpdate
from . import notifications, reputation
from .notifications import NewRequest, RequestAccepted, RequestCompleted
from .presence import hub, user_room

logger = logging.getLogger(__name__)

NEW_REQUEST_FANOUT_LIMIT = int(os.getenv("NEW_REQUEST_FANOUT_LIMIT", "500"))
LIST_LIMIT = 100


def _load(session: Session, request_id: int) -> Request:
    request = session.get(Request, request_id)
    if request is None:
        raise NotFound("Request not found")
    return request


def _compare_and_set(session: Session, request_id: int, expected: Iterable[RequestStatus], *conditions, **values) -> bool:
    """Apply ``values`` only if the request is still in one of ``expected``."""
    values.setdefault("updated_at", utcnow())
    result = session.execute(
        update(Request)
        .where(Request.id == request_id, Request.status.in_(list(expected)), *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _publish(request: Request, staged: List[Notification], *user_ids: Optional[int]) -> None:
    """Push committed notifications and the new request state to the live channel."""
    try:
        for notification in staged:
            notifications.push(notification)
        payload = RequestRead.model_validate(request).model_dump(mode="json")
        for user_id in {uid for uid in user_ids if uid is not None}:
            hub.emit(user_room(user_id), "request:update", payload)
    except Exception:
        logger.warning("live push for request %s failed", request.id, exc_info=True)


def _text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def _enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"{field} must be one of: {allowed}")


def _coordinates(value) -> tuple:
    if value is None or len(value) != 2:
        raise ValidationError("coordinates must be a [lng, lat] pair")
    lng, lat = (float(v) for v in value)
    if not (math.isfinite(lng) and math.isfinite(lat)):
        raise ValidationError("coordinates must be finite numbers")
    if not (-180 <= lng <= 180 and -90 <= lat <= 90):
        raise ValidationError("coordinates are out of range")
    return lng, lat


def create(session: Session, requester: User, attrs: RequestCreate) -> Request:
    if attrs.type is None:
        raise ValidationError("type is required")
    request_type = _enum(RequestType, attrs.type, "type")
    title = _text(attrs.title, "title")
    description = _text(attrs.description, "description")
    lng, lat = _coordinates(attrs.coordinates)
    urgency = _enum(Urgency, attrs.urgency, "urgency") if attrs.urgency else Urgency.medium

    amount_needed = None
    if request_type == RequestType.money and attrs.amount_needed is not None:
        if attrs.amount_needed <= 0:
            raise ValidationError("amount_needed must be positive")
        amount_needed = attrs.amount_needed

    request = Request(
        requester_id=requester.id,
        type=request_type,
        urgency=urgency,
        title=title,
        description=description,
        quantity=attrs.quantity,
        longitude=lng,
        latitude=lat,
        address=attrs.address,
        barangay=attrs.barangay,
        city=attrs.city,
        amount_needed=amount_needed,
        amount_received=Decimal("0"),
    )
    session.add(request)
    session.commit()
    session.refresh(request)
    logger.info("user %s created %s request %s", requester.id, request_type.value, request.id)

    _fan_out_new_request(session, request, requester)
    return request


def _fan_out_new_request(session: Session, request: Request, requester: User) -> None:
    # TODO: replace the unconditional broadcast with per-user interest
    # subscriptions (type, urgency, city) once users can set them.
    event = NewRequest(request_id=request.id, request_type=request.type.value, requester_name=requester.name)
    try:
        recipients = session.exec(
            select(User.id)
            .where(User.id != requester.id, User.is_active == True)  # noqa: E712
            .order_by(User.id)
            .limit(NEW_REQUEST_FANOUT_LIMIT)
        ).all()
        staged = [notifications.stage(session, user_id, event) for user_id in recipients]
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.warning("new_request fan-out for request %s failed", request.id, exc_info=True)
        return
    _publish(request, staged)


def accept(session: Session, request_id: int, volunteer: User) -> Request:
    request = _load(session, request_id)
    if request.requester_id == volunteer.id:
        raise SelfAcceptError()

    now = utcnow()
    won = _compare_and_set(
        session,
        request_id,
        [RequestStatus.open],
        status=RequestStatus.accepted,
        volunteer_id=volunteer.id,
        accepted_at=now,
    )
    if not won:
        session.rollback()
        session.refresh(request)
        if request.status == RequestStatus.accepted:
            raise Conflict("Request is no longer available")
        raise InvalidTransition(f"Cannot accept a {request.status.value} request", required="open")

    session.refresh(request)
    staged = [
        notifications.stage(
            session,
            request.requester_id,
            RequestAccepted(request_id=request.id, request_type=request.type.value, volunteer_name=volunteer.name),
        )
    ]
    session.commit()
    session.refresh(request)
    logger.info("user %s accepted request %s", volunteer.id, request_id)

    _publish(request, staged, request.requester_id, request.volunteer_id)
    return request


def mark_complete(session: Session, request_id: int, volunteer: User) -> Request:
    request = _load(session, request_id)
    if request.volunteer_id != volunteer.id:
        raise NotAuthorized("Only the assigned volunteer can mark as complete")
    if request.status != RequestStatus.accepted:
        raise InvalidTransition("Request must be accepted to be marked complete", required="accepted")

    ok = _compare_and_set(
        session,
        request_id,
        [RequestStatus.accepted],
        Request.volunteer_id == volunteer.id,
        marked_complete_at=utcnow(),
    )
    if not ok:
        session.rollback()
        raise InvalidTransition("Request must be accepted to be marked complete", required="accepted")

    staged = [
        notifications.stage(
            session,
            request.requester_id,
            RequestCompleted(request_id=request.id, actor_name=volunteer.name, confirmed=False),
        )
    ]
    session.commit()
    session.refresh(request)
    logger.info("user %s marked request %s complete", volunteer.id, request_id)

    _publish(request, staged, request.requester_id, request.volunteer_id)
    return request


def confirm_complete(session: Session, request_id: int, requester: User) -> Request:
    request = _load(session, request_id)
    if request.requester_id != requester.id:
        raise NotAuthorized("Only the requester can confirm completion")
    if request.status != RequestStatus.accepted:
        raise InvalidTransition("Request must be accepted to be confirmed", required="accepted")
    if request.marked_complete_at is None:
        raise InvalidTransition(
            "Request has not been marked complete by the volunteer",
            required="accepted (marked complete)",
        )

    # the status flip is the once-only guard for the award below
    ok = _compare_and_set(
        session,
        request_id,
        [RequestStatus.accepted],
        Request.marked_complete_at.is_not(None),
        status=RequestStatus.completed,
        completed_at=utcnow(),
    )
    if not ok:
        session.rollback()
        raise InvalidTransition("Request must be accepted to be confirmed", required="accepted")

    session.refresh(request)
    points = reputation.award(session, request.volunteer_id, request)
    staged = [
        notifications.stage(
            session,
            request.volunteer_id,
            RequestCompleted(request_id=request.id, actor_name=requester.name, confirmed=True, points=points),
        )
    ]
    session.commit()
    session.refresh(request)
    logger.info("user %s confirmed completion of request %s", requester.id, request_id)

    _publish(request, staged, request.requester_id, request.volunteer_id)
    return request


def cancel(session: Session, request_id: int, requester: User) -> Request:
    request = _load(session, request_id)
    if request.requester_id != requester.id:
        raise NotAuthorized("Not authorized to cancel this request")
    released = request.volunteer_id

    ok = _compare_and_set(
        session,
        request_id,
        [RequestStatus.open, RequestStatus.accepted],
        status=RequestStatus.cancelled,
        volunteer_id=None,
        is_active=False,
    )
    if not ok:
        session.rollback()
        session.refresh(request)
        raise InvalidTransition(
            f"Cannot cancel a {request.status.value} request",
            required="open or accepted",
        )
    session.commit()
    session.refresh(request)
    logger.info("user %s cancelled request %s", requester.id, request_id)

    _publish(request, [], request.requester_id, released)
    return request


def edit(session: Session, request_id: int, requester: User, patch: RequestUpdate) -> Request:
    request = _load(session, request_id)
    if request.requester_id != requester.id:
        raise NotAuthorized("Not authorized to update this request")

    values = {}
    changes = patch.model_dump(exclude_unset=True)
    if "title" in changes:
        values["title"] = _text(changes["title"], "title")
    if "description" in changes:
        values["description"] = _text(changes["description"], "description")
    if changes.get("urgency") is not None:
        values["urgency"] = _enum(Urgency, changes["urgency"], "urgency")
    if "quantity" in changes:
        values["quantity"] = changes["quantity"]

    ok = _compare_and_set(
        session,
        request_id,
        [RequestStatus.open, RequestStatus.accepted, RequestStatus.cancelled],
        **values,
    )
    if not ok:
        session.rollback()
        raise InvalidTransition("Cannot update completed request", required="not completed")
    session.commit()
    session.refresh(request)

    _publish(request, [], request.requester_id, request.volunteer_id)
    return request


def get(session: Session, request_id: int) -> Request:
    return _load(session, request_id)


def list_open(
    session: Session,
    type: Optional[str] = None,
    urgency: Optional[str] = None,
    status: Optional[str] = RequestStatus.open.value,
) -> List[Request]:
    query = select(Request).where(Request.is_active == True)  # noqa: E712
    if type is not None and type != "all":
        query = query.where(Request.type == _enum(RequestType, type, "type"))
    if urgency is not None:
        query = query.where(Request.urgency == _enum(Urgency, urgency, "urgency"))
    if status is not None:
        query = query.where(Request.status == _enum(RequestStatus, status, "status"))
    query = query.order_by(Request.created_at.desc(), Request.id.desc()).limit(LIST_LIMIT)
    return list(session.exec(query).all())


def my_requests(session: Session, user: User) -> List[Request]:
    query = (
        select(Request)
        .where(Request.requester_id == user.id)
        .order_by(Request.created_at.desc(), Request.id.desc())
    )
    return list(session.exec(query).all())


def accepted_requests(session: Session, user: User) -> List[Request]:
    query = (
        select(Request)
        .where(
            Request.volunteer_id == user.id,
            Request.status.in_([RequestStatus.accepted, RequestStatus.completed]),
        )
        .order_by(Request.accepted_at.desc(), Request.id.desc())
    )
    return list(session.exec(query).all())
