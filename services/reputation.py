"""Points, badges, ratings and leaderboard rank for volunteers."""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from errors import Conflict, InvalidTransition, NotAuthorized, NotFound, ValidationError
from models import Badge, Request, RequestStatus, Review, Urgency, User, utcnow

logger = logging.getLogger(__name__)

BASE_POINTS = 10
URGENCY_BONUS: Dict[Urgency, int] = {
    Urgency.critical: 15,
    Urgency.high: 10,
    Urgency.medium: 5,
    Urgency.low: 0,
}
FIVE_STAR_BONUS = 5

# lifetime completed count -> badge name
MILESTONES: Tuple[Tuple[int, str], ...] = (
    (1, "First Help"),
    (10, "Helper"),
    (50, "Super Helper"),
    (100, "Relief Champion"),
)

LEADERBOARD_LIMIT = 100
LEADERBOARD_FILTERS = ("all", "volunteers", "donors", "organizations")

# dialects that support INSERT ... ON CONFLICT DO NOTHING
_INSERT = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def points_for(urgency) -> int:
    return BASE_POINTS + URGENCY_BONUS[Urgency(urgency)]


def badges_due(completed_count: int, held: set) -> List[str]:
    return [name for threshold, name in MILESTONES if completed_count >= threshold and name not in held]


def _rating_values(user_id: int) -> dict:
    """Average and count of visible reviews, computed by the database in the UPDATE itself."""
    visible = (Review.reviewee_id == user_id, Review.is_visible == True)  # noqa: E712
    return {
        "average_rating": select(func.round(func.coalesce(func.avg(Review.rating), 0), 1))
        .where(*visible)
        .scalar_subquery(),
        "total_reviews": select(func.count(Review.id)).where(*visible).scalar_subquery(),
    }


def grant_badge(session: Session, user_id: int, name: str, kind: str = "milestone") -> bool:
    """Insert the badge unless the user already holds it. Returns True if it was new."""
    insert = _INSERT[session.get_bind().dialect.name]
    result = session.execute(
        insert(Badge.__table__)
        .values(user_id=user_id, name=name, kind=kind, earned_at=utcnow())
        .on_conflict_do_nothing(index_elements=["user_id", "name"])
    )
    return result.rowcount == 1


def award(session: Session, volunteer_id: int, request: Request) -> int:
    """Credit the volunteer for one confirmed completion.

    Runs inside the caller's transaction; the caller's status transition to
    completed is what makes this happen once per request. Counters are
    incremented in SQL, never written back from a value read earlier.
    """
    points = points_for(request.urgency)
    result = session.execute(
        update(User)
        .where(User.id == volunteer_id)
        .values(
            points=User.points + points,
            completed_requests=User.completed_requests + 1,
            total_helped=User.total_helped + 1,
            **_rating_values(volunteer_id),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound("Volunteer not found")

    completed = session.exec(select(User.completed_requests).where(User.id == volunteer_id)).one()
    held = set(session.exec(select(Badge.name).where(Badge.user_id == volunteer_id)).all())
    for name in badges_due(completed, held):
        if grant_badge(session, volunteer_id, name):
            logger.info("user %s earned badge %r", volunteer_id, name)

    logger.info("awarded %d points to user %s for request %s", points, volunteer_id, request.id)
    return points


def submit_review(
    session: Session,
    reviewer_id: int,
    request_id: int,
    rating: int,
    comment: Optional[str] = None,
) -> Review:
    if not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")

    request = session.get(Request, request_id)
    if request is None:
        raise NotFound("Request not found")
    if request.status != RequestStatus.completed:
        raise InvalidTransition("Can only review completed requests", required="completed")
    if request.requester_id != reviewer_id:
        raise NotAuthorized("Only the requester can leave a review")

    existing = session.exec(
        select(Review).where(Review.reviewer_id == reviewer_id, Review.request_id == request_id)
    ).first()
    if existing:
        raise Conflict("You have already reviewed this request")

    review = Review(
        reviewer_id=reviewer_id,
        reviewee_id=request.volunteer_id,
        request_id=request_id,
        rating=rating,
        comment=comment,
    )
    session.add(review)
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        raise Conflict("You have already reviewed this request")

    bonus = FIVE_STAR_BONUS if rating == 5 else 0
    session.execute(
        update(User)
        .where(User.id == request.volunteer_id)
        .values(points=User.points + bonus, **_rating_values(request.volunteer_id))
        .execution_options(synchronize_session=False)
    )
    session.commit()
    session.refresh(review)
    return review


def reviews_for(session: Session, user_id: int, limit: Optional[int] = None) -> List[Review]:
    stmt = (
        select(Review)
        .where(Review.reviewee_id == user_id, Review.is_visible == True)  # noqa: E712
        .order_by(Review.created_at.desc(), Review.id.desc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.exec(stmt).all())


def _rank_key(user: User) -> tuple:
    return (user.points, user.total_helped, user.total_donated)


def _ordering():
    return (User.points.desc(), User.total_helped.desc(), User.total_donated.desc())


@dataclass
class RankedUser:
    rank: int
    user: User


def _rank(users: List[User]) -> List[RankedUser]:
    """Competition ranking: equal keys share a rank, the next rank skips."""
    ranked: List[RankedUser] = []
    for position, user in enumerate(users, start=1):
        if ranked and _rank_key(ranked[-1].user) == _rank_key(user):
            rank = ranked[-1].rank
        else:
            rank = position
        ranked.append(RankedUser(rank=rank, user=user))
    return ranked


def leaderboard(session: Session, filter: str = "all") -> List[RankedUser]:
    if filter not in LEADERBOARD_FILTERS:
        raise ValidationError(f"Unknown leaderboard filter: {filter}")
    stmt = select(User).where(User.is_active == True)  # noqa: E712
    if filter == "volunteers":
        stmt = stmt.where(User.total_helped > 0)
    elif filter == "donors":
        stmt = stmt.where(User.total_donated > 0)
    elif filter == "organizations":
        stmt = stmt.where(User.user_type == "organization")
    users = session.exec(stmt.order_by(*_ordering()).limit(LEADERBOARD_LIMIT)).all()
    return _rank(list(users))


def rank_of(session: Session, user_id: int) -> Optional[int]:
    user = session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    ahead = session.exec(
        select(func.count()).select_from(User).where(
            User.is_active == True,  # noqa: E712
            (User.points > user.points)
            | ((User.points == user.points) & (User.total_helped > user.total_helped))
            | (
                (User.points == user.points)
                & (User.total_helped == user.total_helped)
                & (User.total_donated > user.total_donated)
            ),
        )
    ).one()
    return ahead + 1


def badges_of(session: Session, user_id: int) -> List[Badge]:
    return list(
        session.exec(select(Badge).where(Badge.user_id == user_id).order_by(Badge.earned_at, Badge.id)).all()
    )
