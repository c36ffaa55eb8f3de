from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError

from db import SessionDep
from schemas import DonationCreate, DonationRead
from services import donations
from .auth import CurrentUserDep

router = APIRouter(tags=["donations"])


def _one(donation) -> dict:
    return DonationRead.model_validate(donation).model_dump(mode="json")


@router.post("/", status_code=201)
def record_donation(body: DonationCreate, session: SessionDep, current: CurrentUserDep):
    """
    Record a donation made outside the platform against a money request.
    """
    donation = donations.record(
        session,
        current,
        request_id=body.request_id,
        amount=body.amount,
        external_reference=body.external_reference,
        notes=body.notes,
    )
    return {
        "success": True,
        "message": f"{donation.net_amount} sent to recipient. {donation.platform_fee} platform fee.",
        "data": _one(donation),
    }


@router.get("/mine")
def my_donations(session: SessionDep, current: CurrentUserDep):
    try:
        data = [_one(d) for d in donations.mine(session, current.id)]
    except SQLAlchemyError:
        return {"success": False, "message": "Could not load donations", "count": 0, "data": []}
    return {"success": True, "count": len(data), "data": data}


@router.get("/request/{request_id}")
def request_donations(request_id: int, session: SessionDep, current: CurrentUserDep):
    try:
        data = [_one(d) for d in donations.for_request(session, request_id)]
    except SQLAlchemyError:
        return {"success": False, "message": "Could not load donations", "count": 0, "data": []}
    return {"success": True, "count": len(data), "data": data}


@router.get("/stats")
def donation_stats(session: SessionDep, current: CurrentUserDep):
    stats = donations.stats(session, current.id)
    return {
        "success": True,
        "data": {
            "total_transactions": stats["total_transactions"],
            "total_donated": str(stats["total_donated"]),
            "total_received": str(stats["total_received"]),
            "total_donations_received": stats["total_donations_received"],
        },
    }
