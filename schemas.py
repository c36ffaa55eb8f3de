from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from models import NotificationKind, RequestStatus, RequestType, Urgency


class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1)
    password: str = Field(min_length=8)
    phone: Optional[str] = None
    user_type: Literal["individual", "organization", "company", "government"] = "individual"


class UserRead(BaseModel):
    id: int
    email: EmailStr
    name: str
    user_type: str

    model_config = ConfigDict(from_attributes=True)


class LoginData(BaseModel):
    email: EmailStr
    password: str


class RequestCreate(BaseModel):
    # Required fields are checked by the lifecycle engine so that callers
    # outside HTTP get the same ValidationError.
    type: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    coordinates: Optional[List[float]] = None
    urgency: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=1)
    address: Optional[str] = None
    barangay: Optional[str] = None
    city: Optional[str] = None
    amount_needed: Optional[Decimal] = None


class RequestUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    urgency: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=1)

    model_config = ConfigDict(extra="forbid")


class RequestRead(BaseModel):
    id: int
    requester_id: int
    volunteer_id: Optional[int]
    type: RequestType
    urgency: Urgency
    title: str
    description: str
    quantity: Optional[int]
    status: RequestStatus
    coordinates: List[float]
    address: Optional[str]
    barangay: Optional[str]
    city: Optional[str]
    amount_needed: Optional[Decimal]
    amount_received: Decimal
    is_active: bool
    created_at: datetime
    accepted_at: Optional[datetime]
    marked_complete_at: Optional[datetime]
    completed_at: Optional[datetime]
    awaiting_confirmation: bool

    model_config = ConfigDict(from_attributes=True)


class MessageCreate(BaseModel):
    content: str


class MessageRead(BaseModel):
    id: int
    chat_id: int
    sender_id: int
    content: str
    created_at: datetime
    is_read: bool
    read_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class ChatRead(BaseModel):
    id: int
    request_id: int
    requester_id: int
    volunteer_id: int
    is_active: bool
    last_message_content: Optional[str]
    last_message_sender_id: Optional[int]
    last_message_at: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationRead(BaseModel):
    id: int
    kind: NotificationKind
    message: str
    related_request_id: Optional[int]
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReviewCreate(BaseModel):
    request_id: int
    rating: int
    comment: Optional[str] = Field(default=None, max_length=500)


class ReviewRead(BaseModel):
    id: int
    reviewer_id: int
    reviewee_id: int
    request_id: int
    rating: int
    comment: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BadgeRead(BaseModel):
    name: str
    kind: str
    earned_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DonationCreate(BaseModel):
    request_id: int
    amount: Decimal
    external_reference: str
    notes: Optional[str] = None


class DonationRead(BaseModel):
    id: int
    donor_id: int
    request_id: int
    amount: Decimal
    platform_fee: Decimal
    net_amount: Decimal
    external_reference: str
    status: str
    notes: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
