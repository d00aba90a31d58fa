"""
Stripe Webhooks
===============
Signature-verified delivery of Stripe events into the join workflow.

- payment_intent.succeeded   -> JoinWorkflow.confirm_payment
- checkout.session.completed -> JoinWorkflow.confirm_checkout_session

The payer and the target come from the metadata written when the intent or
session was created. Confirmation is idempotent, so a webhook racing the
client's own confirm call produces one ledger row.
"""

from typing import Any, Awaitable, Callable, Dict, Optional

import stripe
import structlog

from config import stripe_config
from errors import (
    ClubSphereError,
    GatewayUnavailable,
    InvalidArgument,
    NotConfigured,
    StoreUnavailable,
)
from schemas.entities import USERS, Role, TargetKind, User
from schemas.event_definitions import AuditEventType
from services import audit
from services.identity import Principal
from services.workflow import JoinWorkflow

logger = structlog.get_logger().bind(component="stripe_webhooks")

WebhookHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]

# Errors worth a Stripe redelivery
_TRANSIENT = (GatewayUnavailable, StoreUnavailable)


def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "to_dict_recursive"):
        return obj.to_dict_recursive()
    return obj.to_dict()


class WebhookRouter:
    """Maps Stripe event types to handlers"""

    def __init__(self):
        self._handlers: Dict[str, WebhookHandler] = {}

    def register(self, event_type: str):
        """Decorator to register handler for event type"""
        def decorator(handler: WebhookHandler):
            self._handlers[event_type] = handler
            logger.debug("handler_registered", event_type=event_type)
            return handler
        return decorator

    async def route(self, event: Dict[str, Any]) -> Dict[str, Any]:
        event_type = event.get("type", "unknown")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("webhook_ignored", event_type=event_type)
            return {"handled": False, "event_type": event_type}
        return await handler(event)


class StripeWebhookProcessor:
    """
    Verifies and dispatches Stripe webhook deliveries.

    Example:
        processor = StripeWebhookProcessor(workflow)
        result = await processor.process(body, request.headers["stripe-signature"])
    """

    def __init__(
        self,
        workflow: JoinWorkflow,
        webhook_secret: Optional[str] = None,
        stripe_client=stripe,
    ):
        self.workflow = workflow
        self.store = workflow.store
        self._secret = webhook_secret if webhook_secret is not None else stripe_config.STRIPE_WEBHOOK_SECRET
        self._stripe = stripe_client
        self.router = WebhookRouter()
        self._register_handlers()

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    def _register_handlers(self):
        @self.router.register("payment_intent.succeeded")
        async def handle_intent_succeeded(event: Dict[str, Any]):
            obj = event["data"]["object"]
            return await self._confirm(obj.get("metadata") or {}, obj["id"], checkout=False)

        @self.router.register("checkout.session.completed")
        async def handle_checkout_completed(event: Dict[str, Any]):
            obj = event["data"]["object"]
            return await self._confirm(obj.get("metadata") or {}, obj["id"], checkout=True)

    async def process(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if not self.configured:
            raise NotConfigured("webhook secret is not configured")

        # Verify signature before parsing anything
        try:
            event = self._stripe.Webhook.construct_event(payload, signature or "", self._secret)
        except self._stripe.SignatureVerificationError as e:
            logger.warning("webhook_signature_invalid", error=str(e))
            raise InvalidArgument("invalid webhook signature")
        except ValueError as e:
            logger.warning("webhook_payload_invalid", error=str(e))
            raise InvalidArgument("invalid webhook payload")

        event = _as_dict(event)
        event_type = event.get("type", "unknown")
        await audit.log_event(
            self.store,
            AuditEventType.WEBHOOK_RECEIVED,
            {"event_type": event_type, "stripe_event_id": event.get("id")},
            actor="stripe",
        )
        return await self.router.route(event)

    async def _principal(self, email: str) -> Principal:
        user = User.from_document(await self.store.collection(USERS).find_one({"email": email}))
        return Principal(email=email, role=user.role if user else Role.MEMBER)

    async def _confirm(self, metadata: Dict[str, Any], reference: str, checkout: bool) -> Dict[str, Any]:
        email = (metadata.get("user_email") or "").strip().lower()
        kind = metadata.get("type")
        target_id = metadata.get("target_id")
        if not email or kind not in (TargetKind.CLUB.value, TargetKind.EVENT.value) or not target_id:
            # Payment not created by this service
            logger.info("webhook_metadata_missing", reference=reference)
            return {"handled": False, "reason": "metadata_missing"}

        principal = await self._principal(email)
        confirm = self.workflow.confirm_checkout_session if checkout else self.workflow.confirm_payment
        try:
            outcome = await confirm(principal, TargetKind(kind), target_id, reference)
        except _TRANSIENT:
            raise
        except ClubSphereError as e:
            # Permanent failure; acknowledge so Stripe stops redelivering
            logger.error("webhook_confirm_failed", reference=reference, code=e.code, error=e.detail)
            return {"handled": False, "reason": e.code}

        return {"handled": True, "outcome": outcome.outcome}
