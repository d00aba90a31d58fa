# services/eligibility.py
# ============================================================================
# CLUBSPHERE: FEE & ELIGIBILITY
# ============================================================================
# Pure functions over Club and Event records.
# ============================================================================

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from errors import Full, InvalidState
from schemas.entities import Club, ClubStatus, Event

Target = Union[Club, Event]


def fee(target: Target) -> float:
    if isinstance(target, Club):
        return target.membership_fee
    return target.event_fee if target.is_paid else 0


def fee_minor_units(target: Target) -> int:
    """Fee in integral minor units, rounded half-up (25.005 -> 2501)"""
    amount = Decimal(str(fee(target))) * 100
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def is_free(target: Target) -> bool:
    # Free means nothing is chargeable once rounded to cents
    return fee_minor_units(target) <= 0


def is_joinable(target: Target) -> bool:
    if isinstance(target, Club):
        return target.status == ClubStatus.APPROVED
    return True


def has_capacity(event: Event, registered_count: int) -> bool:
    return event.max_attendees is None or registered_count < event.max_attendees


def ensure_joinable(target: Target) -> None:
    if not is_joinable(target):
        raise InvalidState("club is not open for membership")


def ensure_capacity(event: Event, registered_count: int) -> None:
    if not has_capacity(event, registered_count):
        raise Full(f"event is full ({event.max_attendees} attendees)")
