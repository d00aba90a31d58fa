# payments/__init__.py
# ============================================================================
# CLUBSPHERE: PAYMENTS MODULE
# ============================================================================
# Payment gateway adapter and its circuit breaker. Webhooks live in
# payments.webhooks (imported by the API layer).
# ============================================================================

from payments.circuit_breaker import CircuitBreaker, CircuitState
from payments.gateway import (
    CheckoutHandle,
    CheckoutLineItem,
    IntentHandle,
    PaymentGateway,
    PaymentStatus,
    SessionStatus,
    StripePaymentGateway,
)

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "CheckoutHandle",
    "CheckoutLineItem",
    "IntentHandle",
    "PaymentGateway",
    "PaymentStatus",
    "SessionStatus",
    "StripePaymentGateway",
]
