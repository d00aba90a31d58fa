# schemas/entities.py
# ============================================================================
# CLUBSPHERE: STORED ENTITIES
# ============================================================================
# One pydantic model per document collection. Documents are stored in JSON
# mode (ISO timestamps); ids are assigned by the store and never part of the
# stored body.
# ============================================================================

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# COLLECTION NAMES
# ============================================================================

USERS = "users"
CLUBS = "clubs"
EVENTS = "events"
MEMBERSHIPS = "memberships"
EVENT_REGISTRATIONS = "event_registrations"
PAYMENTS = "payments"
MANAGER_REQUESTS = "manager_requests"
AUDIT_EVENTS = "audit_events"

ALL_COLLECTIONS = (
    USERS,
    CLUBS,
    EVENTS,
    MEMBERSHIPS,
    EVENT_REGISTRATIONS,
    PAYMENTS,
    MANAGER_REQUESTS,
    AUDIT_EVENTS,
)

# Unique constraints enforced by every store implementation
UNIQUE_KEYS: Dict[str, tuple] = {
    USERS: ("email",),
    MEMBERSHIPS: ("user_email", "club_id"),
    EVENT_REGISTRATIONS: ("event_id", "user_email"),
    PAYMENTS: ("gateway_reference",),
}


# ============================================================================
# ENUMS
# ============================================================================

class Role(str, Enum):
    MEMBER = "member"
    MANAGER = "manager"
    ADMIN = "admin"


class ClubStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class MembershipStatus(str, Enum):
    ACTIVE = "active"


class RegistrationStatus(str, Enum):
    REGISTERED = "registered"
    PENDING_PAYMENT = "pending_payment"


class TargetKind(str, Enum):
    """What a principal is joining"""
    CLUB = "club"
    EVENT = "event"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# ============================================================================
# BASE
# ============================================================================

class StoredModel(BaseModel):
    """Common behaviour for documents loaded from the store"""

    id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"id"})

    @classmethod
    def from_document(cls, doc: Optional[Dict[str, Any]]):
        if doc is None:
            return None
        return cls.model_validate(doc)


def _lower(value: str) -> str:
    return value.strip().lower()


# ============================================================================
# ENTITIES
# ============================================================================

class User(StoredModel):
    email: str
    name: str = ""
    photo_url: Optional[str] = None
    password_hash: Optional[str] = None
    role: Role = Role.MEMBER
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _lower(value)


class Club(StoredModel):
    name: str
    description: str = ""
    category: str = ""
    location: str = ""
    banner_url: Optional[str] = None
    membership_fee: float = Field(default=0, ge=0)
    status: ClubStatus = ClubStatus.PENDING
    manager_email: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("manager_email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _lower(value)


class Event(StoredModel):
    club_id: str
    title: str
    description: str = ""
    event_date: datetime
    location: str = ""
    is_paid: bool = False
    event_fee: float = Field(default=0, ge=0)
    max_attendees: Optional[int] = Field(default=None, ge=1)
    manager_email: str
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("manager_email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _lower(value)

    @field_validator("event_date")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Membership(StoredModel):
    user_email: str
    club_id: str
    status: MembershipStatus = MembershipStatus.ACTIVE
    joined_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    payment_id: Optional[str] = None

    @field_validator("user_email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _lower(value)


class EventRegistration(StoredModel):
    event_id: str
    club_id: str
    user_email: str
    status: RegistrationStatus = RegistrationStatus.REGISTERED
    amount_paid: int = 0
    payment_id: Optional[str] = None
    registered_at: datetime = Field(default_factory=utcnow)

    @field_validator("user_email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _lower(value)


class Payment(StoredModel):
    """Write-once ledger row for a completed payment"""
    user_email: str
    type: TargetKind
    club_id: str
    event_id: Optional[str] = None
    amount: int = Field(ge=0)
    currency: str
    gateway_reference: str
    payment_intent_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("user_email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _lower(value)


class ManagerRequest(StoredModel):
    email: str
    name: str = ""
    reason: Optional[str] = None
    status: RequestStatus = RequestStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _lower(value)
