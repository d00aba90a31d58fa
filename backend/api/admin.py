# api/admin.py
# ============================================================================
# CLUBSPHERE: ADMIN ROUTES
# ============================================================================

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_admin, get_store, require_admin
from schemas.entities import ClubStatus, RequestStatus
from schemas.event_definitions import AuditEventType
from schemas.requests import ClubStatusBody, ReviewBody, RoleBody
from services import audit
from services.admin import AdminService
from services.identity import Principal
from storage.document_store import DocumentStore
from tasks.reconciliation import reconcile_payments

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/stats")
async def stats(
    principal: Principal = Depends(require_admin),
    admin: AdminService = Depends(get_admin),
):
    return await admin.admin_stats()


@router.get("/payments")
async def payments(
    limit: int = Query(default=100, ge=1, le=1000),
    principal: Principal = Depends(require_admin),
    admin: AdminService = Depends(get_admin),
):
    return await admin.admin_payments(limit=limit)


@router.get("/users")
async def users(
    principal: Principal = Depends(require_admin),
    admin: AdminService = Depends(get_admin),
):
    return await admin.admin_users()


@router.get("/clubs")
async def clubs(
    status: Optional[ClubStatus] = None,
    principal: Principal = Depends(require_admin),
    admin: AdminService = Depends(get_admin),
):
    return await admin.admin_clubs(status)


@router.get("/manager-requests")
async def manager_requests(
    status: Optional[RequestStatus] = None,
    principal: Principal = Depends(require_admin),
    admin: AdminService = Depends(get_admin),
):
    return await admin.admin_manager_requests(status)


@router.patch("/clubs/{club_id}/status")
async def set_club_status(
    club_id: str,
    body: ClubStatusBody,
    principal: Principal = Depends(require_admin),
    admin: AdminService = Depends(get_admin),
):
    return await admin.set_club_status(principal, club_id, body.status)


@router.patch("/users/{email}/role")
async def set_user_role(
    email: str,
    body: RoleBody,
    principal: Principal = Depends(require_admin),
    admin: AdminService = Depends(get_admin),
):
    return await admin.set_user_role(principal, email, body.role)


@router.patch("/manager-requests/{request_id}")
async def review_manager_request(
    request_id: str,
    body: ReviewBody,
    principal: Principal = Depends(require_admin),
    admin: AdminService = Depends(get_admin),
):
    return await admin.review_manager_request(principal, request_id, body.approve)


@router.post("/reconcile")
async def reconcile(
    limit: Optional[int] = Query(default=None, ge=1),
    principal: Principal = Depends(require_admin),
    store: DocumentStore = Depends(get_store),
):
    return await reconcile_payments(store, limit=limit)


@router.get("/audit-events")
async def audit_events(
    event_type: Optional[AuditEventType] = None,
    limit: int = Query(default=50, ge=1, le=500),
    principal: Principal = Depends(require_admin),
    store: DocumentStore = Depends(get_store),
):
    return await audit.recent_events(store, limit=limit, event_type=event_type)
