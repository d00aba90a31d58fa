# api/members.py
# ============================================================================
# CLUBSPHERE: USER, MEMBER & MANAGER ROUTES
# ============================================================================

from fastapi import APIRouter, Depends, status

from api.dependencies import (
    current_principal,
    get_admin,
    get_catalog,
    require_manager,
    require_member,
)
from schemas.requests import ClubCreate, ClubUpdate, EventCreate, ManagerRequestBody, UserRegistration
from services.admin import AdminService
from services.catalog import CatalogService
from services.identity import Principal

router = APIRouter(prefix="/api", tags=["members"])


# =============================================================================
# USERS
# =============================================================================

@router.post("/users")
async def register_user(body: UserRegistration, admin: AdminService = Depends(get_admin)):
    return await admin.register_user(body)


@router.get("/users/me")
async def my_profile(
    principal: Principal = Depends(current_principal),
    admin: AdminService = Depends(get_admin),
):
    return await admin.get_user(principal, principal.email)


@router.get("/users/{email}/role")
async def user_role(
    email: str,
    principal: Principal = Depends(current_principal),
    admin: AdminService = Depends(get_admin),
):
    user = await admin.get_user(principal, email)
    return {"email": user["email"], "role": user["role"]}


# =============================================================================
# MEMBER
# =============================================================================

@router.get("/member/memberships")
async def my_memberships(
    principal: Principal = Depends(require_member),
    catalog: CatalogService = Depends(get_catalog),
):
    return await catalog.member_memberships(principal)


@router.get("/member/registrations")
async def my_registrations(
    principal: Principal = Depends(require_member),
    catalog: CatalogService = Depends(get_catalog),
):
    return await catalog.member_registrations(principal)


@router.get("/member/payments")
async def my_payments(
    principal: Principal = Depends(require_member),
    catalog: CatalogService = Depends(get_catalog),
):
    return await catalog.member_payments(principal)


@router.post("/manager-requests", status_code=status.HTTP_201_CREATED)
async def request_manager_role(
    body: ManagerRequestBody,
    principal: Principal = Depends(require_member),
    admin: AdminService = Depends(get_admin),
):
    return await admin.create_manager_request(principal, body.reason)


# =============================================================================
# MANAGER
# =============================================================================

@router.get("/manager/clubs")
async def managed_clubs(
    principal: Principal = Depends(require_manager),
    catalog: CatalogService = Depends(get_catalog),
):
    return await catalog.manager_clubs(principal)


@router.post("/manager/clubs", status_code=status.HTTP_201_CREATED)
async def create_club(
    body: ClubCreate,
    principal: Principal = Depends(require_manager),
    catalog: CatalogService = Depends(get_catalog),
):
    return await catalog.create_club(principal, body)


@router.get("/manager/clubs/{club_id}")
async def managed_club(
    club_id: str,
    principal: Principal = Depends(require_manager),
    catalog: CatalogService = Depends(get_catalog),
):
    return await catalog.manager_club(principal, club_id)


@router.patch("/manager/clubs/{club_id}")
async def update_club(
    club_id: str,
    body: ClubUpdate,
    principal: Principal = Depends(require_manager),
    catalog: CatalogService = Depends(get_catalog),
):
    return await catalog.update_club(principal, club_id, body)


@router.get("/manager/clubs/{club_id}/members")
async def club_members(
    club_id: str,
    principal: Principal = Depends(require_manager),
    catalog: CatalogService = Depends(get_catalog),
):
    return await catalog.club_members(principal, club_id)


@router.post("/manager/events", status_code=status.HTTP_201_CREATED)
async def create_event(
    body: EventCreate,
    principal: Principal = Depends(require_manager),
    catalog: CatalogService = Depends(get_catalog),
):
    return await catalog.create_event(principal, body)


@router.get("/manager/events/{event_id}/registrations")
async def event_registrations(
    event_id: str,
    principal: Principal = Depends(require_manager),
    catalog: CatalogService = Depends(get_catalog),
):
    return await catalog.event_registrations(principal, event_id)
