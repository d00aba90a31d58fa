# services/audit.py
# ============================================================================
# CLUBSPHERE: AUDIT TRAIL
# ============================================================================
# Unified event logging: every significant state change is written to the
# console log and appended to the audit_events collection.
# ============================================================================

from typing import Any, Dict, List, Optional

import structlog

from errors import ClubSphereError
from schemas.entities import AUDIT_EVENTS
from schemas.event_definitions import AuditEvent, AuditEventType, Severity
from storage.document_store import DESCENDING, DocumentStore

logger = structlog.get_logger().bind(component="audit")


async def log_event(
    store: DocumentStore,
    event_type: AuditEventType,
    payload: Dict[str, Any],
    actor: str = "system",
    severity: Severity = "INFO",
) -> Optional[str]:
    """
    Append an audit event.

    Persistence failures are logged and swallowed: the audit trail must never
    fail the business operation that produced it.

    Returns:
        Event ID, or None when the write failed
    """
    log_method = getattr(logger, severity.lower().replace("warn", "warning"), logger.info)
    log_method(event_type.value, actor=actor, **payload)

    event = AuditEvent(event_type=event_type, actor=actor, payload=payload, severity=severity)
    try:
        return await store.collection(AUDIT_EVENTS).insert_one(event.to_document())
    except ClubSphereError as e:
        logger.error("audit_write_failed", event_type=event_type.value, error=str(e))
        return None


async def recent_events(
    store: DocumentStore,
    limit: int = 50,
    event_type: Optional[AuditEventType] = None,
) -> List[AuditEvent]:
    """Most recent audit events, newest first"""
    filter = {"event_type": event_type.value} if event_type else {}
    docs = await store.collection(AUDIT_EVENTS).find(
        filter, sort=[("created_at", DESCENDING)], limit=limit
    )
    return [AuditEvent.from_document(d) for d in docs]
