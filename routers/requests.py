import logging
from typing import Optional

from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError

from db import SessionDep
from errors import ValidationError
from schemas import RequestCreate, RequestRead, RequestUpdate
from services import lifecycle
from .auth import CurrentUserDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["requests"])


def _one(request) -> dict:
    return RequestRead.model_validate(request).model_dump(mode="json")


def _many(requests) -> dict:
    data = [_one(r) for r in requests]
    return {"success": True, "count": len(data), "data": data}


def _list_failed(where: str, exc: Exception) -> dict:
    logger.warning("listing %s failed", where, exc_info=exc)
    return {"success": False, "message": f"Could not load {where}", "count": 0, "data": []}


@router.post("/", status_code=201)
def create_request(attrs: RequestCreate, session: SessionDep, current: CurrentUserDep):
    request = lifecycle.create(session, current, attrs)
    return {"success": True, "data": _one(request)}


@router.get("/")
def list_requests(
    session: SessionDep,
    type: Optional[str] = None,
    urgency: Optional[str] = None,
    status: Optional[str] = "open",
):
    """
    List active requests, newest first. Open requests unless a status is given.
    """
    try:
        return _many(lifecycle.list_open(session, type=type, urgency=urgency, status=status))
    except ValidationError as exc:
        return {"success": False, "message": exc.message, "count": 0, "data": []}
    except SQLAlchemyError as exc:
        return _list_failed("requests", exc)


@router.get("/mine")
def my_requests(session: SessionDep, current: CurrentUserDep):
    try:
        return _many(lifecycle.my_requests(session, current))
    except SQLAlchemyError as exc:
        return _list_failed("your requests", exc)


@router.get("/accepted")
def accepted_requests(session: SessionDep, current: CurrentUserDep):
    try:
        return _many(lifecycle.accepted_requests(session, current))
    except SQLAlchemyError as exc:
        return _list_failed("accepted requests", exc)


@router.get("/{request_id}")
def get_request(request_id: int, session: SessionDep, current: CurrentUserDep):
    return {"success": True, "data": _one(lifecycle.get(session, request_id))}


@router.post("/{request_id}/accept")
def accept_request(request_id: int, session: SessionDep, current: CurrentUserDep):
    request = lifecycle.accept(session, request_id, current)
    return {"success": True, "data": _one(request)}


@router.post("/{request_id}/mark-complete")
def mark_complete(request_id: int, session: SessionDep, current: CurrentUserDep):
    request = lifecycle.mark_complete(session, request_id, current)
    return {
        "success": True,
        "message": "Marked as complete. Waiting for requester confirmation.",
        "data": _one(request),
    }


@router.post("/{request_id}/confirm-complete")
def confirm_complete(request_id: int, session: SessionDep, current: CurrentUserDep):
    request = lifecycle.confirm_complete(session, request_id, current)
    return {"success": True, "message": "Request completed successfully!", "data": _one(request)}


@router.patch("/{request_id}")
def update_request(request_id: int, patch: RequestUpdate, session: SessionDep, current: CurrentUserDep):
    request = lifecycle.edit(session, request_id, current, patch)
    return {"success": True, "data": _one(request)}


@router.delete("/{request_id}")
def cancel_request(request_id: int, session: SessionDep, current: CurrentUserDep):
    request = lifecycle.cancel(session, request_id, current)
    return {"success": True, "message": "Request cancelled successfully", "data": _one(request)}
