"""
Error taxonomy
==============
Domain errors raised by the store, the payment gateway adapter and the
join workflow. Each carries the HTTP status and machine code the API layer
reports to clients.

Idempotent outcomes (already joined, already confirmed) are not errors and
have no class here.
"""

from typing import Optional


class ClubSphereError(Exception):
    """Base class for all domain errors"""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)


class InvalidArgument(ClubSphereError):
    """Malformed identifier or request field"""
    status_code = 400
    code = "invalid_argument"


class Unauthenticated(ClubSphereError):
    """Missing or invalid session token"""
    status_code = 401
    code = "unauthenticated"


class Forbidden(ClubSphereError):
    """Role or identity does not permit this action"""
    status_code = 403
    code = "forbidden"


class NotFound(ClubSphereError):
    """Requested resource does not exist"""
    status_code = 404
    code = "not_found"


class InvalidState(ClubSphereError):
    """Target is not in a state that allows this action"""
    status_code = 409
    code = "invalid_state"


class AlreadyExists(ClubSphereError):
    """A conflicting record already exists"""
    status_code = 409
    code = "already_exists"


class Full(ClubSphereError):
    """Event has reached its attendee cap"""
    status_code = 409
    code = "full"


class PaymentNotCompleted(ClubSphereError):
    """Gateway reports the payment has not succeeded"""
    status_code = 402
    code = "payment_not_completed"


class GatewayUnavailable(ClubSphereError):
    """Payment gateway call failed or timed out"""
    status_code = 502
    code = "gateway_unavailable"


class StoreUnavailable(ClubSphereError):
    """Persistence call failed"""
    status_code = 503
    code = "store_unavailable"


class DuplicateKeyError(ClubSphereError):
    """Store-level unique constraint violated"""
    status_code = 409
    code = "duplicate_key"

    def __init__(self, collection: str, detail: Optional[str] = None):
        self.collection = collection
        super().__init__(detail or f"duplicate key in {collection}")


class NotConfigured(ClubSphereError):
    """Required integration is not configured"""
    status_code = 503
    code = "not_configured"
