# schemas/event_definitions.py
# ============================================================================
# CLUBSPHERE: AUDIT EVENT DEFINITIONS
# ============================================================================
# Every significant state change in the join workflow and admin surface is
# appended to the audit_events collection with one of these types.
# ============================================================================

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Literal

from pydantic import Field

from schemas.entities import StoredModel, utcnow


class AuditEventType(str, Enum):
    # Join workflow
    JOIN_GRANTED = "join.granted"
    JOIN_DUPLICATE = "join.duplicate"
    PAYMENT_INTENT_CREATED = "payment.intent_created"
    CHECKOUT_SESSION_CREATED = "payment.checkout_created"
    PAYMENT_RECORDED = "payment.recorded"
    PAYMENT_REPLAYED = "payment.replayed"
    PAYMENT_NOT_COMPLETED = "payment.not_completed"

    # Administration
    USER_REGISTERED = "user.registered"
    ROLE_CHANGED = "user.role_changed"
    CLUB_CREATED = "club.created"
    CLUB_STATUS_CHANGED = "club.status_changed"
    EVENT_CREATED = "event.created"
    MANAGER_REQUEST_CREATED = "manager_request.created"
    MANAGER_REQUEST_REVIEWED = "manager_request.reviewed"

    # Maintenance
    RECONCILE_REPAIRED = "reconcile.repaired"
    WEBHOOK_RECEIVED = "webhook.received"


Severity = Literal["DEBUG", "INFO", "WARN", "ERROR", "CRITICAL"]


class AuditEvent(StoredModel):
    """Append-only activity record"""
    event_type: AuditEventType
    actor: str = "system"
    payload: Dict[str, Any] = Field(default_factory=dict)
    severity: Severity = "INFO"
    created_at: datetime = Field(default_factory=utcnow)
