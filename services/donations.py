"""Recording donations to money requests.

The external reference is stored as given; it is not checked against any
payment provider.
"""

import logging
import os
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, update
from sqlmodel import Session, select

from errors import NotFound, ValidationError
from models import Donation, Request, RequestType, User
from . import notifications
from .notifications import DonationReceived

logger = logging.getLogger(__name__)

PLATFORM_FEE_PERCENT = Decimal(os.getenv("PLATFORM_FEE_PERCENT", "5"))
MIN_DONATION = Decimal(os.getenv("MIN_DONATION", "10"))

CENTS = Decimal("0.01")


def split(amount: Decimal, fee_percent: Decimal = PLATFORM_FEE_PERCENT) -> Tuple[Decimal, Decimal]:
    """Return ``(platform_fee, net_amount)`` rounded to cents."""
    amount = Decimal(amount)
    platform_fee = (amount * Decimal(fee_percent) / 100).quantize(CENTS, rounding=ROUND_HALF_UP)
    net_amount = (amount - platform_fee).quantize(CENTS, rounding=ROUND_HALF_UP)
    return platform_fee, net_amount


def record(
    session: Session,
    donor: User,
    request_id: int,
    amount: Decimal,
    external_reference: str,
    notes: Optional[str] = None,
) -> Donation:
    if amount < MIN_DONATION:
        raise ValidationError(f"Minimum donation is {MIN_DONATION}")
    if external_reference is None or not external_reference.strip():
        raise ValidationError("external_reference is required")

    request = session.get(Request, request_id)
    if request is None or not request.is_active or request.type != RequestType.money:
        raise NotFound("Invalid money request")

    platform_fee, net_amount = split(amount)
    donation = Donation(
        donor_id=donor.id,
        request_id=request.id,
        amount=Decimal(amount).quantize(CENTS),
        platform_fee=platform_fee,
        net_amount=net_amount,
        external_reference=external_reference.strip(),
        notes=notes,
    )
    session.add(donation)

    # increments run in SQL
    session.execute(
        update(Request)
        .where(Request.id == request.id)
        .values(amount_received=Request.amount_received + net_amount)
        .execution_options(synchronize_session=False)
    )
    session.execute(
        update(User)
        .where(User.id == donor.id)
        .values(total_donated=User.total_donated + donation.amount)
        .execution_options(synchronize_session=False)
    )

    staged = notifications.stage(
        session,
        request.requester_id,
        DonationReceived(request_id=request.id, donor_name=donor.name, amount=donation.amount),
    )
    session.commit()
    session.refresh(donation)
    logger.info("user %s donated %s to request %s (fee %s)", donor.id, donation.amount, request_id, platform_fee)

    try:
        notifications.push(staged)
    except Exception:
        logger.warning("live push for donation %s failed", donation.id, exc_info=True)
    return donation


def mine(session: Session, donor_id: int) -> List[Donation]:
    stmt = select(Donation).where(Donation.donor_id == donor_id).order_by(Donation.created_at.desc(), Donation.id.desc())
    return list(session.exec(stmt).all())


def for_request(session: Session, request_id: int) -> List[Donation]:
    stmt = (
        select(Donation)
        .where(Donation.request_id == request_id, Donation.status == "completed")
        .order_by(Donation.created_at.desc(), Donation.id.desc())
    )
    return list(session.exec(stmt).all())


def stats(session: Session, user_id: int) -> dict:
    donated_count, donated_total = session.exec(
        select(func.count(Donation.id), func.coalesce(func.sum(Donation.amount), 0)).where(
            Donation.donor_id == user_id, Donation.status == "completed"
        )
    ).one()
    received_count, received_total = session.exec(
        select(func.count(Donation.id), func.coalesce(func.sum(Donation.net_amount), 0))
        .join(Request, Request.id == Donation.request_id)
        .where(Request.requester_id == user_id, Donation.status == "completed")
    ).one()
    return {
        "total_transactions": donated_count,
        "total_donated": Decimal(donated_total).quantize(CENTS),
        "total_received": Decimal(received_total).quantize(CENTS),
        "total_donations_received": received_count,
    }
