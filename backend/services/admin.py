# services/admin.py
# ============================================================================
# CLUBSPHERE: USERS, ROLES & ADMINISTRATION
# ============================================================================
# User profiles, manager-role requests, club approval and the admin
# dashboards.
# ============================================================================

from collections import defaultdict
from typing import Any, Dict, List, Optional

import structlog

from errors import AlreadyExists, DuplicateKeyError, InvalidArgument, InvalidState, NotFound
from schemas.entities import (
    CLUBS,
    EVENT_REGISTRATIONS,
    EVENTS,
    MANAGER_REQUESTS,
    MEMBERSHIPS,
    PAYMENTS,
    USERS,
    Club,
    ClubStatus,
    ManagerRequest,
    RequestStatus,
    Role,
    User,
    utcnow,
)
from schemas.event_definitions import AuditEventType
from schemas.requests import UserRegistration
from services import audit
from services.identity import Principal, require_object_id, require_role, require_self_or_admin
from storage.document_store import DESCENDING, DocumentStore

logger = structlog.get_logger().bind(component="admin")


def _public(user_doc: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in user_doc.items() if k != "password_hash"}


class AdminService:
    """User lifecycle and admin-only operations"""

    def __init__(self, store: DocumentStore):
        self.store = store

    # =========================================================================
    # USERS
    # =========================================================================

    async def register_user(self, data: UserRegistration) -> Dict[str, Any]:
        """Upsert a profile by email; new users start as members"""
        users = self.store.collection(USERS)
        email = data.email.strip().lower()

        existing = await users.find_one({"email": email})
        if existing is not None:
            patch = {"name": data.name or existing.get("name", "")}
            if data.photo_url is not None:
                patch["photo_url"] = data.photo_url
            await users.update_one({"id": existing["id"]}, patch)
            return _public({**existing, **patch})

        user = User(email=email, name=data.name, photo_url=data.photo_url)
        doc = user.to_document()
        try:
            user_id = await users.insert_one(doc)
        except DuplicateKeyError:
            # Concurrent first sign-in
            return _public(await users.find_one({"email": email}))

        await audit.log_event(self.store, AuditEventType.USER_REGISTERED, {"email": email}, actor=email)
        return _public({"id": user_id, **doc})

    async def get_user(self, principal: Principal, email: str) -> Dict[str, Any]:
        require_self_or_admin(principal, email)
        doc = await self.store.collection(USERS).find_one({"email": email.strip().lower()})
        if doc is None:
            raise NotFound("user not found")
        return _public(doc)

    async def set_user_role(self, principal: Principal, email: str, role: Role) -> Dict[str, Any]:
        require_role(principal, Role.ADMIN)
        email = email.strip().lower()
        if email == principal.email and role != Role.ADMIN:
            raise InvalidState("admins cannot demote themselves")

        users = self.store.collection(USERS)
        doc = await users.find_one({"email": email})
        if doc is None:
            raise NotFound("user not found")

        previous = doc.get("role")
        await users.update_one({"id": doc["id"]}, {"role": role.value})
        await audit.log_event(
            self.store, AuditEventType.ROLE_CHANGED,
            {"email": email, "from_role": previous, "to_role": role.value},
            actor=principal.email,
        )
        return _public({**doc, "role": role.value})

    # =========================================================================
    # MANAGER REQUESTS
    # =========================================================================

    async def create_manager_request(self, principal: Principal, reason: Optional[str] = None) -> Dict[str, Any]:
        if principal.role in (Role.MANAGER, Role.ADMIN):
            raise InvalidState(f"already a {principal.role.value}")

        requests = self.store.collection(MANAGER_REQUESTS)
        async with self.store.transaction(lock_key=f"manager_request:{principal.email}"):
            pending = await requests.find_one(
                {"email": principal.email, "status": RequestStatus.PENDING.value}
            )
            if pending is not None:
                raise AlreadyExists("a manager request is already pending")

            user = await self.store.collection(USERS).find_one({"email": principal.email})
            request = ManagerRequest(
                email=principal.email,
                name=(user or {}).get("name", ""),
                reason=reason,
            )
            doc = request.to_document()
            request_id = await requests.insert_one(doc)

        await audit.log_event(
            self.store, AuditEventType.MANAGER_REQUEST_CREATED,
            {"request_id": request_id}, actor=principal.email,
        )
        return {"id": request_id, **doc}

    async def review_manager_request(self, principal: Principal, raw_id: Any, approve: bool) -> Dict[str, Any]:
        require_role(principal, Role.ADMIN)
        request_id = require_object_id(raw_id, "request_id")
        requests = self.store.collection(MANAGER_REQUESTS)

        async with self.store.transaction(lock_key=f"manager_request:{request_id}"):
            request = ManagerRequest.from_document(await requests.find_one({"id": request_id}))
            if request is None:
                raise NotFound("manager request not found")
            if request.status != RequestStatus.PENDING:
                raise InvalidState(f"request is already {request.status.value}")

            reviewed = request.model_copy(update={
                "status": RequestStatus.APPROVED if approve else RequestStatus.REJECTED,
                "reviewed_at": utcnow(),
                "reviewed_by": principal.email,
            })
            doc = reviewed.to_document()
            await requests.update_one(
                {"id": request_id},
                {k: doc[k] for k in ("status", "reviewed_at", "reviewed_by")},
            )

            if approve:
                users = self.store.collection(USERS)
                user = await users.find_one({"email": request.email})
                if user is None:
                    raise NotFound("requesting user no longer exists")
                if user.get("role") == Role.MEMBER.value:
                    await users.update_one({"id": user["id"]}, {"role": Role.MANAGER.value})

        await audit.log_event(
            self.store, AuditEventType.MANAGER_REQUEST_REVIEWED,
            {"request_id": request_id, "email": request.email, "approved": approve},
            actor=principal.email,
        )
        return {"id": request_id, **doc}

    # =========================================================================
    # CLUB APPROVAL
    # =========================================================================

    async def set_club_status(self, principal: Principal, raw_id: Any, status: ClubStatus) -> Dict[str, Any]:
        require_role(principal, Role.ADMIN)
        if status not in (ClubStatus.APPROVED, ClubStatus.REJECTED):
            raise InvalidArgument("status must be approved or rejected")

        club_id = require_object_id(raw_id, "club_id")
        clubs = self.store.collection(CLUBS)
        club = Club.from_document(await clubs.find_one({"id": club_id}))
        if club is None:
            raise NotFound("club not found")
        if club.status != ClubStatus.PENDING:
            raise InvalidState(f"club is already {club.status.value}")

        updated = club.model_copy(update={"status": status, "updated_at": utcnow()})
        doc = updated.to_document()
        await clubs.update_one({"id": club_id}, {"status": doc["status"], "updated_at": doc["updated_at"]})

        await audit.log_event(
            self.store, AuditEventType.CLUB_STATUS_CHANGED,
            {"club_id": club_id, "status": status.value}, actor=principal.email,
        )
        return {"id": club_id, **doc}

    # =========================================================================
    # DASHBOARDS
    # =========================================================================

    async def admin_stats(self) -> Dict[str, Any]:
        """Platform-wide counts and revenue per currency"""
        users_by_role = {
            role.value: await self.store.collection(USERS).count_documents({"role": role.value})
            for role in Role
        }
        clubs_by_status = {
            status.value: await self.store.collection(CLUBS).count_documents({"status": status.value})
            for status in ClubStatus
        }

        revenue: Dict[str, int] = defaultdict(int)
        payments = await self.store.collection(PAYMENTS).find({})
        for payment in payments:
            revenue[payment["currency"]] += payment["amount"]

        return {
            "users": {"total": sum(users_by_role.values()), **users_by_role},
            "clubs": {"total": sum(clubs_by_status.values()), **clubs_by_status},
            "events": await self.store.collection(EVENTS).count_documents({}),
            "memberships": await self.store.collection(MEMBERSHIPS).count_documents({}),
            "registrations": await self.store.collection(EVENT_REGISTRATIONS).count_documents({}),
            "payments": len(payments),
            "revenue": dict(revenue),
        }

    async def admin_payments(self, limit: int = 100) -> List[Dict[str, Any]]:
        return await self.store.collection(PAYMENTS).find(
            {}, sort=[("created_at", DESCENDING)], limit=limit
        )

    async def admin_users(self) -> List[Dict[str, Any]]:
        docs = await self.store.collection(USERS).find({}, sort=[("created_at", DESCENDING)])
        return [_public(d) for d in docs]

    async def admin_clubs(self, status: Optional[ClubStatus] = None) -> List[Dict[str, Any]]:
        filter = {"status": status.value} if status else {}
        return await self.store.collection(CLUBS).find(filter, sort=[("created_at", DESCENDING)])

    async def admin_manager_requests(self, status: Optional[RequestStatus] = None) -> List[Dict[str, Any]]:
        filter = {"status": status.value} if status else {}
        return await self.store.collection(MANAGER_REQUESTS).find(
            filter, sort=[("created_at", DESCENDING)]
        )
