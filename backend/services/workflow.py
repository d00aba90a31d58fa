"""
Join Workflow Engine
====================
Grants club memberships and event registrations.

Free targets are joined directly. Paid targets go through the payment
gateway (payment intent or hosted checkout) and are granted exactly once per
successful payment:

1. Idempotency guard: a ledger row for the gateway reference means the
   confirmation already happened.
2. The gateway must report a terminal success state.
3. Existing access short-circuits with success.
4. The Payment ledger row is written (gateway amount, never the client's).
5. The membership/registration is created, referencing the Payment.

Steps 4 and 5 share one store transaction. All writes for a target are
serialized on a per-target lock so event capacity cannot be oversold.
"""

from datetime import timedelta
from typing import Any, Dict, Literal, Optional, Tuple, Union

import structlog
from pydantic import BaseModel

from config import stripe_config, workflow_config
from errors import DuplicateKeyError, Forbidden, InvalidArgument, InvalidState, NotFound, PaymentNotCompleted
from payments.gateway import CheckoutLineItem, PaymentGateway
from schemas.entities import (
    CLUBS,
    EVENT_REGISTRATIONS,
    EVENTS,
    MEMBERSHIPS,
    PAYMENTS,
    Club,
    Event,
    EventRegistration,
    Membership,
    MembershipStatus,
    Payment,
    RegistrationStatus,
    Role,
    TargetKind,
    utcnow,
)
from schemas.event_definitions import AuditEventType
from services import audit
from services.eligibility import (
    ensure_capacity,
    ensure_joinable,
    fee_minor_units,
    is_free,
)
from services.identity import Principal, require_object_id
from storage.document_store import DocumentStore

logger = structlog.get_logger().bind(component="join_workflow")

Target = Union[Club, Event]


# =============================================================================
# RESULTS
# =============================================================================

class JoinOutcome(BaseModel):
    """Success shape shared by first-time and idempotent replays"""
    success: bool = True
    already: bool = False
    outcome: Literal["joined", "already_joined", "confirmed", "already_confirmed"]
    kind: TargetKind
    target_id: str
    record: Optional[Dict[str, Any]] = None
    payment: Optional[Dict[str, Any]] = None


class IntentResult(BaseModel):
    kind: TargetKind
    target_id: str
    reference: str
    client_secret: str
    amount: int
    currency: str


class CheckoutResult(BaseModel):
    kind: TargetKind
    target_id: str
    session_id: str
    session_url: str
    amount: int
    currency: str


class _Receipt(BaseModel):
    """What the gateway says was captured"""
    reference: str
    amount: int
    currency: str
    payment_intent_id: Optional[str] = None


# =============================================================================
# ENGINE
# =============================================================================

class JoinWorkflow:
    """
    Orchestrates fee lookup, gateway interaction and idempotent recording.

    Example:
        workflow = JoinWorkflow(store, StripePaymentGateway())
        intent = await workflow.create_payment_intent(principal, TargetKind.CLUB, club_id)
        # client completes the payment with intent.client_secret
        outcome = await workflow.confirm_payment(principal, TargetKind.CLUB, club_id, intent.reference)
    """

    def __init__(
        self,
        store: DocumentStore,
        gateway: Optional[PaymentGateway],
        currency: Optional[str] = None,
        frontend_url: Optional[str] = None,
        membership_days: Optional[int] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.currency = (currency or stripe_config.CURRENCY).lower()
        self.frontend_url = (frontend_url or stripe_config.FRONTEND_URL).rstrip("/")
        self.membership_days = membership_days or workflow_config.MEMBERSHIP_DURATION_DAYS

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def load_target(self, kind: TargetKind, target_id: str) -> Target:
        if kind == TargetKind.CLUB:
            target = Club.from_document(await self.store.collection(CLUBS).find_one({"id": target_id}))
        else:
            target = Event.from_document(await self.store.collection(EVENTS).find_one({"id": target_id}))
        if target is None:
            raise NotFound(f"{kind.value} not found")
        return target

    def _access_collection(self, kind: TargetKind):
        return self.store.collection(MEMBERSHIPS if kind == TargetKind.CLUB else EVENT_REGISTRATIONS)

    @staticmethod
    def _access_filter(kind: TargetKind, email: str, target_id: str) -> Dict[str, str]:
        if kind == TargetKind.CLUB:
            return {"user_email": email, "club_id": target_id}
        return {"event_id": target_id, "user_email": email}

    async def _existing_access(self, kind: TargetKind, email: str, target_id: str) -> Optional[Dict[str, Any]]:
        return await self._access_collection(kind).find_one(self._access_filter(kind, email, target_id))

    @staticmethod
    def _is_granted(kind: TargetKind, doc: Optional[Dict[str, Any]]) -> bool:
        if doc is None:
            return False
        if kind == TargetKind.CLUB:
            return doc.get("status") == MembershipStatus.ACTIVE.value
        return doc.get("status") == RegistrationStatus.REGISTERED.value

    @staticmethod
    def _lock_key(kind: TargetKind, target_id: str) -> str:
        return f"{kind.value}:{target_id}"

    async def _registration_count(self, event_id: str) -> int:
        return await self.store.collection(EVENT_REGISTRATIONS).count_documents({"event_id": event_id})

    def _outcome(self, outcome: str, kind: TargetKind, target_id: str,
                 record: Optional[Dict[str, Any]], payment: Optional[Dict[str, Any]] = None) -> JoinOutcome:
        return JoinOutcome(
            already=outcome.startswith("already"),
            outcome=outcome,
            kind=kind,
            target_id=target_id,
            record=record,
            payment=payment,
        )

    # -------------------------------------------------------------------------
    # Granting access
    # -------------------------------------------------------------------------

    async def _grant(self, kind: TargetKind, principal: Principal, target: Target,
                     payment: Optional[Payment] = None) -> Dict[str, Any]:
        """Create the access record, or upgrade a pending_payment registration"""
        now = utcnow()
        collection = self._access_collection(kind)

        if kind == TargetKind.CLUB:
            doc = Membership(
                user_email=principal.email,
                club_id=target.id,
                joined_at=now,
                expires_at=now + timedelta(days=self.membership_days) if payment else None,
                payment_id=payment.id if payment else None,
            ).to_document()
            doc_id = await collection.insert_one(doc)
            return {"id": doc_id, **doc}

        doc = EventRegistration(
            event_id=target.id,
            club_id=target.club_id,
            user_email=principal.email,
            status=RegistrationStatus.REGISTERED,
            amount_paid=payment.amount if payment else 0,
            payment_id=payment.id if payment else None,
            registered_at=now,
        ).to_document()

        # This service never writes pending_payment rows (intent creation is
        # gateway-only); rows in that state come from imported or legacy data.
        existing = await collection.find_one(self._access_filter(kind, principal.email, target.id))
        if existing is not None:
            await collection.update_one({"id": existing["id"]}, doc)
            return {"id": existing["id"], **doc}

        doc_id = await collection.insert_one(doc)
        return {"id": doc_id, **doc}

    async def grant_for_payment(self, payment: Payment) -> Tuple[Dict[str, Any], bool]:
        """
        Ensure the access a recorded payment paid for exists.

        Returns:
            (access record, True if it had to be created)
        """
        kind = TargetKind(payment.type)
        target_id = payment.event_id if kind == TargetKind.EVENT else payment.club_id
        target = await self.load_target(kind, target_id)
        owner = Principal(email=payment.user_email, role=Role.MEMBER)

        async with self.store.transaction(lock_key=self._lock_key(kind, target_id)):
            record = await self._existing_access(kind, owner.email, target_id)
            if self._is_granted(kind, record):
                return record, False
            record = await self._grant(kind, owner, target, payment)

        logger.warning("access_repaired", payment_id=payment.id, kind=kind.value,
                       target_id=target_id, user=owner.email)
        return record, True

    # -------------------------------------------------------------------------
    # Free join
    # -------------------------------------------------------------------------

    async def request_free_join(self, principal: Principal, kind: TargetKind, raw_target_id: Any) -> JoinOutcome:
        target_id = require_object_id(raw_target_id, f"{kind.value}_id")
        target = await self.load_target(kind, target_id)
        ensure_joinable(target)
        if not is_free(target):
            raise InvalidState(f"{kind.value} requires payment")

        log = logger.bind(kind=kind.value, target_id=target_id, user=principal.email)

        existing = await self._existing_access(kind, principal.email, target_id)
        if self._is_granted(kind, existing):
            await audit.log_event(
                self.store,
                AuditEventType.JOIN_DUPLICATE,
                {"kind": kind.value, "target_id": target_id},
                actor=principal.email,
            )
            return self._outcome("already_joined", kind, target_id, existing)

        try:
            async with self.store.transaction(lock_key=self._lock_key(kind, target_id)):
                existing = await self._existing_access(kind, principal.email, target_id)
                if self._is_granted(kind, existing):
                    return self._outcome("already_joined", kind, target_id, existing)
                if kind == TargetKind.EVENT and existing is None:
                    ensure_capacity(target, await self._registration_count(target_id))
                record = await self._grant(kind, principal, target)
        except DuplicateKeyError:
            log.info("free_join_conflict")
            existing = await self._existing_access(kind, principal.email, target_id)
            return self._outcome("already_joined", kind, target_id, existing)

        await audit.log_event(
            self.store,
            AuditEventType.JOIN_GRANTED,
            {"kind": kind.value, "target_id": target_id, "paid": False},
            actor=principal.email,
        )
        return self._outcome("joined", kind, target_id, record)

    # -------------------------------------------------------------------------
    # Paid flows: creation
    # -------------------------------------------------------------------------

    async def _paid_target(self, principal: Principal, kind: TargetKind, raw_target_id: Any):
        target_id = require_object_id(raw_target_id, f"{kind.value}_id")
        target = await self.load_target(kind, target_id)
        ensure_joinable(target)
        if is_free(target):
            raise InvalidState(f"{kind.value} is free; join it directly")

        existing = await self._existing_access(kind, principal.email, target_id)
        if self._is_granted(kind, existing):
            raise InvalidState(f"already joined this {kind.value}")
        if kind == TargetKind.EVENT and existing is None:
            ensure_capacity(target, await self._registration_count(target_id))
        return target_id, target

    def _metadata(self, kind: TargetKind, target: Target, principal: Principal) -> Dict[str, str]:
        club_id = target.id if kind == TargetKind.CLUB else target.club_id
        return {
            "type": kind.value,
            "target_id": target.id,
            "club_id": club_id,
            "user_email": principal.email,
        }

    async def create_payment_intent(self, principal: Principal, kind: TargetKind, raw_target_id: Any) -> IntentResult:
        target_id, target = await self._paid_target(principal, kind, raw_target_id)
        amount = fee_minor_units(target)

        handle = await self.gateway.create_intent(
            amount, self.currency, self._metadata(kind, target, principal)
        )

        await audit.log_event(
            self.store,
            AuditEventType.PAYMENT_INTENT_CREATED,
            {"kind": kind.value, "target_id": target_id, "reference": handle.reference, "amount": amount},
            actor=principal.email,
        )
        return IntentResult(
            kind=kind,
            target_id=target_id,
            reference=handle.reference,
            client_secret=handle.client_secret,
            amount=amount,
            currency=self.currency,
        )

    async def create_checkout_session(self, principal: Principal, kind: TargetKind, raw_target_id: Any) -> CheckoutResult:
        target_id, target = await self._paid_target(principal, kind, raw_target_id)
        amount = fee_minor_units(target)

        if kind == TargetKind.CLUB:
            item = CheckoutLineItem(
                name=f"Membership: {target.name}",
                description=target.description[:200],
                amount=amount,
            )
        else:
            item = CheckoutLineItem(
                name=f"Event: {target.title}",
                description=target.description[:200],
                amount=amount,
            )

        success_url = (
            f"{self.frontend_url}/payment/success"
            f"?session_id={{CHECKOUT_SESSION_ID}}&type={kind.value}&id={target_id}"
        )
        cancel_url = f"{self.frontend_url}/{kind.value}s/{target_id}"

        handle = await self.gateway.create_checkout_session(
            item,
            self.currency,
            success_url,
            cancel_url,
            self._metadata(kind, target, principal),
            customer_email=principal.email,
        )

        await audit.log_event(
            self.store,
            AuditEventType.CHECKOUT_SESSION_CREATED,
            {"kind": kind.value, "target_id": target_id, "session_id": handle.session_id, "amount": amount},
            actor=principal.email,
        )
        return CheckoutResult(
            kind=kind,
            target_id=target_id,
            session_id=handle.session_id,
            session_url=handle.session_url,
            amount=amount,
            currency=self.currency,
        )

    # -------------------------------------------------------------------------
    # Paid flows: confirmation
    # -------------------------------------------------------------------------

    async def confirm_payment(self, principal: Principal, kind: TargetKind, raw_target_id: Any,
                              reference: Optional[str]) -> JoinOutcome:
        target_id, target, replay = await self._begin_confirmation(principal, kind, raw_target_id, reference)
        if replay is not None:
            return replay

        status = await self.gateway.retrieve_status(reference)
        if status.state != "succeeded":
            await self._not_completed(principal, kind, target_id, reference, status.state)
        self._check_metadata(status.metadata, principal, kind, target_id)

        receipt = _Receipt(reference=reference, amount=status.captured_amount, currency=status.currency)
        return await self._record_and_grant(principal, kind, target, receipt)

    async def confirm_checkout_session(self, principal: Principal, kind: TargetKind, raw_target_id: Any,
                                       session_id: Optional[str]) -> JoinOutcome:
        target_id, target, replay = await self._begin_confirmation(principal, kind, raw_target_id, session_id)
        if replay is not None:
            return replay

        status = await self.gateway.retrieve_session(session_id)
        if status.payment_state != "paid":
            await self._not_completed(principal, kind, target_id, session_id, status.payment_state)
        self._check_metadata(status.metadata, principal, kind, target_id)

        receipt = _Receipt(
            reference=session_id,
            amount=status.captured_amount,
            currency=status.currency,
            payment_intent_id=status.payment_reference,
        )
        return await self._record_and_grant(principal, kind, target, receipt)

    async def _begin_confirmation(self, principal: Principal, kind: TargetKind, raw_target_id: Any,
                                  reference: Optional[str]):
        """Validate inputs and run the step-1 idempotency guard"""
        target_id = require_object_id(raw_target_id, f"{kind.value}_id")
        if not isinstance(reference, str) or not reference.strip():
            raise InvalidArgument("payment reference is required")
        reference = reference.strip()

        target = await self.load_target(kind, target_id)

        payments = self.store.collection(PAYMENTS)
        existing = await payments.find_one({"gateway_reference": reference})
        if existing is None:
            existing = await payments.find_one({"payment_intent_id": reference})
        if existing is None:
            return target_id, target, None

        if existing["user_email"] != principal.email:
            raise Forbidden("payment belongs to another user")
        if existing.get("event_id" if kind == TargetKind.EVENT else "club_id") != target_id:
            raise InvalidState(f"payment was made for a different {kind.value}")

        record, _ = await self.grant_for_payment(Payment.from_document(existing))

        await audit.log_event(
            self.store,
            AuditEventType.PAYMENT_REPLAYED,
            {"kind": kind.value, "target_id": target_id, "reference": reference},
            actor=principal.email,
        )
        return target_id, target, self._outcome("already_confirmed", kind, target_id, record, existing)

    async def _not_completed(self, principal: Principal, kind: TargetKind, target_id: str,
                             reference: str, state: str):
        await audit.log_event(
            self.store,
            AuditEventType.PAYMENT_NOT_COMPLETED,
            {"kind": kind.value, "target_id": target_id, "reference": reference, "state": state},
            actor=principal.email,
            severity="WARN",
        )
        raise PaymentNotCompleted(f"payment is {state}")

    @staticmethod
    def _check_metadata(metadata: Dict[str, str], principal: Principal, kind: TargetKind, target_id: str):
        """Reject a gateway payment that was created for someone or something else"""
        owner = metadata.get("user_email")
        if owner and owner.lower() != principal.email:
            raise Forbidden("payment belongs to another user")
        if metadata.get("type") and metadata["type"] != kind.value:
            raise InvalidState(f"payment was not made for a {kind.value}")
        if metadata.get("target_id") and metadata["target_id"] != target_id:
            raise InvalidState(f"payment was made for a different {kind.value}")

    async def _record_and_grant(self, principal: Principal, kind: TargetKind, target: Target,
                                receipt: _Receipt) -> JoinOutcome:
        target_id = target.id
        log = logger.bind(kind=kind.value, target_id=target_id, user=principal.email,
                          reference=receipt.reference)

        expected = fee_minor_units(target)
        if receipt.amount != expected:
            log.warning("amount_mismatch", expected=expected, captured=receipt.amount)

        payment = Payment(
            user_email=principal.email,
            type=kind,
            club_id=target.id if kind == TargetKind.CLUB else target.club_id,
            event_id=target.id if kind == TargetKind.EVENT else None,
            amount=receipt.amount,
            currency=(receipt.currency or self.currency).lower(),
            gateway_reference=receipt.reference,
            payment_intent_id=receipt.payment_intent_id,
        )

        try:
            async with self.store.transaction(lock_key=self._lock_key(kind, target_id)):
                # Step 3, re-checked under the target lock
                existing = await self._existing_access(kind, principal.email, target_id)
                if self._is_granted(kind, existing):
                    log.info("confirmation_access_exists")
                    return self._outcome("already_joined", kind, target_id, existing)

                if kind == TargetKind.EVENT and existing is None:
                    count = await self._registration_count(target_id)
                    if target.max_attendees is not None and count >= target.max_attendees:
                        # Money is already captured; honour it and flag the overflow
                        log.warning("paid_registration_over_capacity", count=count,
                                    max_attendees=target.max_attendees)

                # Step 4: ledger first
                payment.id = await self.store.collection(PAYMENTS).insert_one(payment.to_document())
                # Step 5: access referencing the ledger row
                record = await self._grant(kind, principal, target, payment)
        except DuplicateKeyError as e:
            if e.collection == PAYMENTS:
                log.info("confirmation_concurrent_replay")
                existing_payment = await self.store.collection(PAYMENTS).find_one(
                    {"gateway_reference": receipt.reference}
                )
                record = await self._existing_access(kind, principal.email, target_id)
                return self._outcome("already_confirmed", kind, target_id, record, existing_payment)
            log.info("confirmation_access_conflict")
            record = await self._existing_access(kind, principal.email, target_id)
            return self._outcome("already_joined", kind, target_id, record)

        payment_doc = {"id": payment.id, **payment.to_document()}
        await audit.log_event(
            self.store,
            AuditEventType.PAYMENT_RECORDED,
            {"kind": kind.value, "target_id": target_id, "payment_id": payment.id,
             "amount": payment.amount, "currency": payment.currency},
            actor=principal.email,
        )
        await audit.log_event(
            self.store,
            AuditEventType.JOIN_GRANTED,
            {"kind": kind.value, "target_id": target_id, "paid": True},
            actor=principal.email,
        )
        return self._outcome("confirmed", kind, target_id, record, payment_doc)
