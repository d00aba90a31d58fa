# schemas/__init__.py
# ============================================================================
# CLUBSPHERE: SCHEMAS
# ============================================================================
# Stored entities, audit events and HTTP request/response models
# ============================================================================

from schemas.entities import (
    Club,
    ClubStatus,
    Event,
    EventRegistration,
    ManagerRequest,
    Membership,
    Payment,
    RegistrationStatus,
    RequestStatus,
    Role,
    TargetKind,
    User,
)
from schemas.event_definitions import AuditEvent, AuditEventType

__all__ = [
    "Club",
    "ClubStatus",
    "Event",
    "EventRegistration",
    "ManagerRequest",
    "Membership",
    "Payment",
    "RegistrationStatus",
    "RequestStatus",
    "Role",
    "TargetKind",
    "User",
    "AuditEvent",
    "AuditEventType",
]
