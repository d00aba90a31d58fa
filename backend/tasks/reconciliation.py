"""
Reconciliation Loop - The Safety Net
====================================
Background task that finds recorded payments without the membership or
registration they paid for and grants the missing access.

A ledger row is written before its access record, in the same transaction.
Stores or deployments where that guarantee is weaker (manual data fixes,
restored backups, an interrupted replay) can still leave a gap; this loop
closes it.

Features:
- Runs every RECONCILE_INTERVAL seconds when RECONCILE_ENABLED is set
- Walks the whole ledger in pages of RECONCILE_BATCH_SIZE, keyed by id
- Applies the same grant rules as payment confirmation
- Logs every repair to the audit trail
"""

import asyncio
from typing import Dict, Optional

import structlog

from config import reconcile_config
from errors import ClubSphereError
from schemas.entities import PAYMENTS, Payment
from schemas.event_definitions import AuditEventType
from services import audit
from services.workflow import JoinWorkflow
from storage.document_store import ASCENDING, DocumentStore

logger = structlog.get_logger().bind(component="reconciliation")


# =============================================================================
# RECONCILIATION LOGIC
# =============================================================================

async def reconcile_payments(store: DocumentStore, limit: Optional[int] = None) -> Dict[str, int]:
    """
    Grant access for every recorded payment that is missing it.

    Args:
        store: Document store to scan
        limit: Page size; the whole ledger is scanned either way

    Returns:
        {"scanned": n, "repaired": m, "failed": k}
    """
    workflow = JoinWorkflow(store, gateway=None)
    page_size = limit or reconcile_config.BATCH_SIZE
    payments = store.collection(PAYMENTS)

    scanned = 0
    repaired = 0
    failed = 0
    cursor: Optional[str] = None

    while True:
        filter = {"id": {"$gt": cursor}} if cursor else {}
        docs = await payments.find(filter, sort=[("id", ASCENDING)], limit=page_size)

        for doc in docs:
            payment = Payment.from_document(doc)
            try:
                _, created = await workflow.grant_for_payment(payment)
            except ClubSphereError as e:
                failed += 1
                logger.error("reconcile_payment_failed", payment_id=payment.id, error=e.detail)
                continue

            if created:
                repaired += 1
                await audit.log_event(
                    store,
                    AuditEventType.RECONCILE_REPAIRED,
                    {"payment_id": payment.id, "kind": payment.type.value, "user_email": payment.user_email},
                    severity="WARN",
                )

        scanned += len(docs)
        if len(docs) < page_size:
            break
        cursor = docs[-1]["id"]

    result = {"scanned": scanned, "repaired": repaired, "failed": failed}
    logger.info("reconcile_cycle_complete", **result)
    return result


async def reconciliation_loop(store: DocumentStore):
    """
    Background task started by the API lifespan.
    Cancelled on shutdown.
    """
    logger.info(
        "reconcile_loop_started",
        interval=reconcile_config.CHECK_INTERVAL,
        batch_size=reconcile_config.BATCH_SIZE,
        enabled=reconcile_config.ENABLED,
    )

    if not reconcile_config.ENABLED:
        logger.info("reconcile_loop_disabled")
        return

    while True:
        try:
            await reconcile_payments(store)
        except ClubSphereError as e:
            # Store outage: try again next cycle
            logger.error("reconcile_loop_error", error=e.detail, code=e.code)

        await asyncio.sleep(reconcile_config.CHECK_INTERVAL)
