# schemas/requests.py
# ============================================================================
# CLUBSPHERE: REQUEST BODIES
# ============================================================================
# Client-supplied payloads. Validation here produces FastAPI's 422 shape.
# ============================================================================

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from schemas.entities import ClubStatus, Role


def whole_cents(value: Optional[float]) -> Optional[float]:
    """Fees are charged in cents; finer amounts cannot be collected"""
    if value is not None and Decimal(str(value)).as_tuple().exponent < -2:
        raise ValueError("fee must have at most two decimal places")
    return value


class UserRegistration(BaseModel):
    email: str = Field(min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    name: str = ""
    photo_url: Optional[str] = None


class ClubCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: str = ""
    category: str = ""
    location: str = ""
    banner_url: Optional[str] = None
    membership_fee: float = Field(default=0, ge=0)

    @field_validator("membership_fee")
    @classmethod
    def fee_in_cents(cls, value):
        return whole_cents(value)


class ClubUpdate(BaseModel):
    """Partial club edit; status and owner are not editable here"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None
    category: Optional[str] = None
    location: Optional[str] = None
    banner_url: Optional[str] = None
    membership_fee: Optional[float] = Field(default=None, ge=0)

    @field_validator("membership_fee")
    @classmethod
    def fee_in_cents(cls, value):
        return whole_cents(value)


class EventCreate(BaseModel):
    club_id: str
    title: str = Field(min_length=1, max_length=160)
    description: str = ""
    event_date: datetime
    location: str = ""
    is_paid: bool = False
    event_fee: float = Field(default=0, ge=0)
    max_attendees: Optional[int] = Field(default=None, ge=1)

    @field_validator("event_fee")
    @classmethod
    def fee_in_cents(cls, value):
        return whole_cents(value)


class ConfirmPaymentBody(BaseModel):
    payment_intent_id: Optional[str] = None


class CheckoutSuccessBody(BaseModel):
    session_id: Optional[str] = None


class ManagerRequestBody(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class ClubStatusBody(BaseModel):
    status: ClubStatus


class RoleBody(BaseModel):
    role: Role


class ReviewBody(BaseModel):
    approve: bool
