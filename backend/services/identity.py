# services/identity.py
# ============================================================================
# CLUBSPHERE: IDENTITY & ROLE CONTEXT
# ============================================================================
# Session token verification, principal resolution, role checks and the
# single identifier parser used at the workflow boundary.
# ============================================================================

import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Union

import jwt
import structlog

from config import auth_config
from errors import Forbidden, InvalidArgument, Unauthenticated
from schemas.entities import USERS, Role, User, utcnow
from storage.document_store import DocumentStore

logger = structlog.get_logger().bind(component="identity")

ROLE_RANK = {
    Role.MEMBER: 0,
    Role.MANAGER: 1,
    Role.ADMIN: 2,
}


@dataclass(frozen=True)
class Principal:
    """Authenticated caller attached to every protected request"""
    email: str
    role: Role


# =============================================================================
# AUTHORIZATION
# =============================================================================

def authorize(principal: Optional[Principal], required_role: Union[Role, str]) -> bool:
    """True when the principal's role is at least required_role"""
    if principal is None:
        return False
    return ROLE_RANK[Role(principal.role)] >= ROLE_RANK[Role(required_role)]


def require_role(principal: Optional[Principal], required_role: Union[Role, str]) -> Principal:
    if principal is None:
        raise Unauthenticated()
    if not authorize(principal, required_role):
        raise Forbidden(f"{Role(required_role).value} role required")
    return principal


def require_self_or_admin(principal: Principal, email: str) -> None:
    if principal.email != email.strip().lower() and principal.role != Role.ADMIN:
        raise Forbidden("cannot access another user's records")


# =============================================================================
# IDENTIFIERS
# =============================================================================

@dataclass(frozen=True)
class ParsedId:
    """Tagged result of parsing a client-supplied identifier"""
    value: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_object_id(raw: object) -> ParsedId:
    if raw is None or not str(raw).strip():
        return ParsedId(error="identifier is required")
    try:
        return ParsedId(value=str(uuid.UUID(str(raw).strip())))
    except ValueError:
        return ParsedId(error=f"malformed identifier: {raw!r}")


def require_object_id(raw: object, label: str = "id") -> str:
    parsed = parse_object_id(raw)
    if not parsed.ok:
        raise InvalidArgument(f"{label}: {parsed.error}")
    return parsed.value


# =============================================================================
# SESSION TOKENS
# =============================================================================

def issue_token(email: str, ttl_hours: Optional[int] = None) -> str:
    """Sign a session token for email (development and tests)"""
    now = utcnow()
    payload = {
        "email": email.strip().lower(),
        "iat": now,
        "exp": now + timedelta(hours=ttl_hours or auth_config.TOKEN_TTL_HOURS),
    }
    return jwt.encode(payload, auth_config.JWT_SECRET, algorithm=auth_config.JWT_ALGORITHM)


def verify_token(token: Optional[str]) -> str:
    """Return the normalized email carried by a valid token"""
    if not token:
        raise Unauthenticated("missing session token")
    try:
        payload = jwt.decode(
            token, auth_config.JWT_SECRET, algorithms=[auth_config.JWT_ALGORITHM]
        )
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("session token expired")
    except jwt.InvalidTokenError as e:
        logger.info("token_rejected", error=str(e))
        raise Unauthenticated("invalid session token")

    email = payload.get("email")
    if not isinstance(email, str) or not email.strip():
        raise Unauthenticated("session token has no email")
    return email.strip().lower()


async def resolve_principal(store: DocumentStore, token: Optional[str]) -> Principal:
    """Verify the token and read the caller's current role from the store"""
    email = verify_token(token)
    user = User.from_document(await store.collection(USERS).find_one({"email": email}))
    if user is None:
        raise Unauthenticated("unknown user")
    return Principal(email=user.email, role=user.role)
