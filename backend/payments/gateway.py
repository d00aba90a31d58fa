"""
Payment Gateway Adapter
=======================
Wraps the Stripe API behind the four primitives the join workflow needs:

- create_intent / retrieve_status for the payment-intent flow
- create_checkout_session / retrieve_session for the hosted checkout flow

Stripe's SDK is synchronous, so every call runs in a worker thread. A
circuit breaker turns a run of transport failures into immediate
GatewayUnavailable errors.

pip install pydantic stripe structlog
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Literal, Optional

import stripe
import structlog
from pydantic import BaseModel, Field

from config import stripe_config
from errors import GatewayUnavailable, InvalidArgument
from payments.circuit_breaker import CircuitBreaker

logger = structlog.get_logger().bind(component="payment_gateway")


# =============================================================================
# GATEWAY MODELS
# =============================================================================

PaymentState = Literal["succeeded", "pending", "failed", "canceled"]


class IntentHandle(BaseModel):
    reference: str
    client_secret: str


class PaymentStatus(BaseModel):
    """Terminal or in-flight state of a payment intent"""
    state: PaymentState
    captured_amount: int = 0
    currency: str = ""
    metadata: Dict[str, str] = Field(default_factory=dict)


class CheckoutLineItem(BaseModel):
    name: str
    description: str = ""
    amount: int = Field(ge=1)


class CheckoutHandle(BaseModel):
    session_url: str
    session_id: str


class SessionStatus(BaseModel):
    payment_state: Literal["paid", "unpaid"]
    captured_amount: int = 0
    currency: str = ""
    payment_reference: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


# =============================================================================
# INTERFACE
# =============================================================================

class PaymentGateway(ABC):
    """Opaque remote payment processor"""

    @abstractmethod
    async def create_intent(
        self, amount: int, currency: str, metadata: Dict[str, str]
    ) -> IntentHandle:
        pass

    @abstractmethod
    async def retrieve_status(self, reference: str) -> PaymentStatus:
        pass

    @abstractmethod
    async def create_checkout_session(
        self,
        line_item: CheckoutLineItem,
        currency: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
    ) -> CheckoutHandle:
        pass

    @abstractmethod
    async def retrieve_session(self, session_id: str) -> SessionStatus:
        pass


# =============================================================================
# STRIPE IMPLEMENTATION
# =============================================================================

_INTENT_STATES: Dict[str, PaymentState] = {
    "succeeded": "succeeded",
    "canceled": "canceled",
}


def _plain(obj: Any) -> Dict[str, str]:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        obj = obj.to_dict()
    return {str(k): str(v) for k, v in dict(obj).items()}


class StripePaymentGateway(PaymentGateway):
    """
    Stripe-backed gateway.

    Example:
        gateway = StripePaymentGateway(api_key="sk_test_...")
        handle = await gateway.create_intent(2500, "usd", {"type": "club"})
        status = await gateway.retrieve_status(handle.reference)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        stripe_client=stripe,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self._api_key = api_key if api_key is not None else stripe_config.STRIPE_SECRET_KEY
        self._stripe = stripe_client
        self._breaker = circuit_breaker or CircuitBreaker("stripe")

    async def _call(self, operation: str, fn: Callable, **kwargs) -> Any:
        if not self._api_key:
            raise GatewayUnavailable("payment gateway is not configured")
        if not await self._breaker.can_execute():
            raise GatewayUnavailable("payment gateway circuit is open")

        try:
            result = await asyncio.to_thread(fn, api_key=self._api_key, **kwargs)
        except self._stripe.InvalidRequestError as e:
            # The processor answered; this is a bad reference, not an outage
            await self._breaker.record_success()
            logger.warning("gateway_invalid_request", operation=operation, error=str(e))
            raise InvalidArgument(f"payment gateway rejected request: {e.user_message or e}")
        except self._stripe.StripeError as e:
            await self._breaker.record_failure(e)
            logger.error("gateway_call_failed", operation=operation,
                         error=str(e), error_type=type(e).__name__)
            raise GatewayUnavailable(f"payment gateway error: {type(e).__name__}")

        await self._breaker.record_success()
        return result

    async def create_intent(self, amount, currency, metadata) -> IntentHandle:
        intent = await self._call(
            "create_intent",
            self._stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
        logger.info("intent_created", reference=intent.id, amount=amount, currency=currency)
        return IntentHandle(reference=intent.id, client_secret=intent.client_secret)

    async def retrieve_status(self, reference: str) -> PaymentStatus:
        intent = await self._call(
            "retrieve_status", self._stripe.PaymentIntent.retrieve, id=reference
        )
        raw = getattr(intent, "status", None)
        state = _INTENT_STATES.get(raw)
        if state is None:
            failed = raw == "requires_payment_method" and getattr(intent, "last_payment_error", None)
            state = "failed" if failed else "pending"

        return PaymentStatus(
            state=state,
            captured_amount=getattr(intent, "amount_received", 0) or 0,
            currency=getattr(intent, "currency", "") or "",
            metadata=_plain(getattr(intent, "metadata", None)),
        )

    async def create_checkout_session(
        self,
        line_item,
        currency,
        success_url,
        cancel_url,
        metadata,
        customer_email=None,
    ) -> CheckoutHandle:
        product_data = {"name": line_item.name}
        if line_item.description:
            product_data["description"] = line_item.description

        params = dict(
            mode="payment",
            payment_method_types=["card"],
            line_items=[{
                "price_data": {
                    "currency": currency,
                    "unit_amount": line_item.amount,
                    "product_data": product_data,
                },
                "quantity": 1,
            }],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
        )
        if customer_email:
            params["customer_email"] = customer_email

        session = await self._call(
            "create_checkout_session", self._stripe.checkout.Session.create, **params
        )
        logger.info("checkout_created", session_id=session.id, amount=line_item.amount)
        return CheckoutHandle(session_url=session.url, session_id=session.id)

    async def retrieve_session(self, session_id: str) -> SessionStatus:
        session = await self._call(
            "retrieve_session", self._stripe.checkout.Session.retrieve, id=session_id
        )
        paid = getattr(session, "payment_status", None) == "paid"
        payment_intent = getattr(session, "payment_intent", None)
        if payment_intent is not None and not isinstance(payment_intent, str):
            payment_intent = getattr(payment_intent, "id", None)

        return SessionStatus(
            payment_state="paid" if paid else "unpaid",
            captured_amount=getattr(session, "amount_total", 0) or 0,
            currency=getattr(session, "currency", "") or "",
            payment_reference=payment_intent,
            metadata=_plain(getattr(session, "metadata", None)),
        )
