# api/dependencies.py
# ============================================================================
# CLUBSPHERE: REQUEST DEPENDENCIES
# ============================================================================
# Injected store/gateway handles, service factories and the principal
# resolver. Every protected route declares its minimum role here.
# ============================================================================

from typing import Optional

from fastapi import Depends, Request

from config import auth_config
from errors import StoreUnavailable
from payments.gateway import PaymentGateway
from schemas.entities import Role
from services.admin import AdminService
from services.catalog import CatalogService
from services.identity import Principal, require_role, resolve_principal
from services.workflow import JoinWorkflow
from storage.document_store import DocumentStore


def get_store(request: Request) -> DocumentStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise StoreUnavailable("store is not initialized")
    return store


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_workflow(
    store: DocumentStore = Depends(get_store),
    gateway: PaymentGateway = Depends(get_gateway),
) -> JoinWorkflow:
    return JoinWorkflow(store, gateway)


def get_catalog(store: DocumentStore = Depends(get_store)) -> CatalogService:
    return CatalogService(store)


def get_admin(store: DocumentStore = Depends(get_store)) -> AdminService:
    return AdminService(store)


# =============================================================================
# AUTHENTICATION
# =============================================================================

def session_token(request: Request) -> Optional[str]:
    """Token from the session cookie, falling back to a Bearer header"""
    token = request.cookies.get(auth_config.TOKEN_COOKIE_NAME)
    if token:
        return token
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


async def current_principal(
    request: Request,
    store: DocumentStore = Depends(get_store),
) -> Principal:
    return await resolve_principal(store, session_token(request))


def role_required(role: Role):
    async def dependency(principal: Principal = Depends(current_principal)) -> Principal:
        return require_role(principal, role)
    return dependency


require_member = role_required(Role.MEMBER)
require_manager = role_required(Role.MANAGER)
require_admin = role_required(Role.ADMIN)
