# routers/users.py
from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError

from db import SessionDep
from errors import NotFound, ValidationError
from models import User
from schemas import BadgeRead, ReviewCreate, ReviewRead
from services import reputation
from .auth import CurrentUserDep

router = APIRouter(tags=["users"])

PROFILE_REVIEWS = 20


def _stats(user: User) -> dict:
    return {
        "total_helped": user.total_helped,
        "completed_requests": user.completed_requests,
        "average_rating": user.average_rating,
        "total_reviews": user.total_reviews,
        "points": user.points,
        "total_donated": str(user.total_donated),
    }


def _badges(session: SessionDep, user_id: int) -> list:
    return [BadgeRead.model_validate(b).model_dump(mode="json") for b in reputation.badges_of(session, user_id)]


@router.get("/leaderboard")
def leaderboard(session: SessionDep, current: CurrentUserDep, filter: str = "all"):
    """
    Active users ordered by points, then people helped, then amount donated.
    Users with identical scores share a rank.
    """
    try:
        ranked = reputation.leaderboard(session, filter)
    except ValidationError as exc:
        return {"success": False, "message": exc.message, "data": []}
    except SQLAlchemyError:
        return {"success": False, "message": "Could not load leaderboard", "data": []}

    data = []
    for entry in ranked:
        data.append(
            {
                "rank": entry.rank,
                "id": entry.user.id,
                "name": entry.user.name,
                "user_type": entry.user.user_type,
                "stats": _stats(entry.user),
                "badges": _badges(session, entry.user.id),
            }
        )
    return {"success": True, "data": data}


@router.get("/me/stats")
def my_stats(session: SessionDep, current: CurrentUserDep):
    return {
        "success": True,
        "data": {
            "rank": reputation.rank_of(session, current.id),
            "stats": _stats(current),
            "badges": _badges(session, current.id),
        },
    }


@router.post("/reviews", status_code=201)
def create_review(review_in: ReviewCreate, session: SessionDep, current: CurrentUserDep):
    """
    Requester rates the volunteer of a completed request.
    """
    review = reputation.submit_review(
        session,
        reviewer_id=current.id,
        request_id=review_in.request_id,
        rating=review_in.rating,
        comment=review_in.comment,
    )
    return {"success": True, "data": ReviewRead.model_validate(review).model_dump(mode="json")}


@router.get("/{user_id}")
def get_profile(user_id: int, session: SessionDep, current: CurrentUserDep):
    """
    Public profile: stats, badges, recent reviews and leaderboard rank.
    Contact details are only shown to the user themselves.
    """
    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")

    reviews = reputation.reviews_for(session, user_id, limit=PROFILE_REVIEWS)
    profile = {
        "id": user.id,
        "name": user.name,
        "user_type": user.user_type,
        "created_at": user.created_at.isoformat(),
        "stats": _stats(user),
        "badges": _badges(session, user_id),
        "leaderboard_rank": reputation.rank_of(session, user_id),
        "reviews": [ReviewRead.model_validate(r).model_dump(mode="json") for r in reviews],
    }
    if current.id == user_id:
        profile["email"] = user.email
        profile["phone"] = user.phone
    return {"success": True, "data": profile}


@router.get("/{user_id}/reviews")
def list_reviews(user_id: int, session: SessionDep, current: CurrentUserDep):
    try:
        reviews = reputation.reviews_for(session, user_id)
    except SQLAlchemyError:
        return {"success": False, "message": "Could not load reviews", "count": 0, "data": []}
    data = [ReviewRead.model_validate(r).model_dump(mode="json") for r in reviews]
    return {"success": True, "count": len(data), "data": data}
