from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestType(str, Enum):
    food = "food"
    water = "water"
    shelter = "shelter"
    clothing = "clothing"
    medical = "medical"
    money = "money"
    other = "other"


class Urgency(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class RequestStatus(str, Enum):
    open = "open"
    accepted = "accepted"
    completed = "completed"
    cancelled = "cancelled"


class NotificationKind(str, Enum):
    new_request = "new_request"
    request_accepted = "request_accepted"
    request_completed = "request_completed"
    donation_received = "donation_received"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str
    phone: Optional[str] = None
    user_type: str = "individual"  # individual | organization | company | government
    password_hash: str
    is_active: bool = True

    total_helped: int = 0
    completed_requests: int = 0
    average_rating: float = 0.0
    total_reviews: int = 0
    points: int = 0
    total_donated: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)

    created_at: datetime = Field(default_factory=utcnow)


class Badge(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    name: str
    kind: str = "milestone"
    earned_at: datetime = Field(default_factory=utcnow)


class Request(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    requester_id: int = Field(foreign_key="user.id", index=True)
    volunteer_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)

    type: RequestType
    urgency: Urgency = Urgency.medium
    title: str
    description: str
    quantity: Optional[int] = None
    status: RequestStatus = Field(default=RequestStatus.open, index=True)

    longitude: float
    latitude: float
    address: Optional[str] = None
    barangay: Optional[str] = None
    city: Optional[str] = None

    amount_needed: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    amount_received: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)

    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    accepted_at: Optional[datetime] = None
    marked_complete_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def coordinates(self) -> list[float]:
        return [self.longitude, self.latitude]

    @property
    def awaiting_confirmation(self) -> bool:
        return self.status == RequestStatus.accepted and self.marked_complete_at is not None


class Review(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("reviewer_id", "request_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    reviewer_id: int = Field(foreign_key="user.id", index=True)
    reviewee_id: int = Field(foreign_key="user.id", index=True)
    request_id: int = Field(foreign_key="request.id", index=True)
    rating: int
    comment: Optional[str] = Field(default=None, max_length=500)
    is_visible: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class Chat(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    request_id: int = Field(foreign_key="request.id", unique=True)
    requester_id: int = Field(foreign_key="user.id", index=True)
    volunteer_id: int = Field(foreign_key="user.id", index=True)
    is_active: bool = True

    last_message_content: Optional[str] = None
    last_message_sender_id: Optional[int] = None
    last_message_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)

    def has_participant(self, user_id: int) -> bool:
        return user_id in (self.requester_id, self.volunteer_id)


class Message(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    chat_id: int = Field(foreign_key="chat.id", index=True)
    sender_id: int = Field(foreign_key="user.id")
    content: str
    created_at: datetime = Field(default_factory=utcnow)
    is_read: bool = False
    read_at: Optional[datetime] = None


class Notification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    kind: NotificationKind
    message: str
    related_request_id: Optional[int] = Field(default=None, foreign_key="request.id")
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class Donation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    donor_id: int = Field(foreign_key="user.id", index=True)
    request_id: int = Field(foreign_key="request.id", index=True)

    amount: Decimal = Field(max_digits=12, decimal_places=2)
    platform_fee: Decimal = Field(max_digits=12, decimal_places=2)
    net_amount: Decimal = Field(max_digits=12, decimal_places=2)
    external_reference: str
    status: str = "completed"
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
