# services/catalog.py
# ============================================================================
# CLUBSPHERE: CLUBS, EVENTS & MEMBER VIEWS
# ============================================================================
# Club and event management for managers, public listings, and the
# per-member views of memberships, registrations and payments.
# ============================================================================

from typing import Any, Dict, List, Optional

import structlog

from errors import Forbidden, InvalidArgument, InvalidState, NotFound
from schemas.entities import (
    CLUBS,
    EVENT_REGISTRATIONS,
    EVENTS,
    MEMBERSHIPS,
    PAYMENTS,
    Club,
    ClubStatus,
    Event,
    Role,
    utcnow,
)
from schemas.event_definitions import AuditEventType
from schemas.requests import ClubCreate, ClubUpdate, EventCreate
from services import audit
from services.identity import Principal, require_object_id, require_role
from storage.document_store import ASCENDING, DESCENDING, DocumentStore

logger = structlog.get_logger().bind(component="catalog")

CLUB_SORTS = {
    "newest": [("created_at", DESCENDING)],
    "oldest": [("created_at", ASCENDING)],
    "fee_asc": [("membership_fee", ASCENDING), ("created_at", DESCENDING)],
    "fee_desc": [("membership_fee", DESCENDING), ("created_at", DESCENDING)],
}

MAX_LIST_LIMIT = 200


def _limit(limit: Optional[int]) -> int:
    if limit is None:
        return MAX_LIST_LIMIT
    if limit < 1:
        raise InvalidArgument("limit must be positive")
    return min(limit, MAX_LIST_LIMIT)


def _by_id(docs: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    return {d["id"]: d for d in docs}


class CatalogService:
    """Clubs and events as seen by visitors, members and managers"""

    def __init__(self, store: DocumentStore):
        self.store = store

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def _club(self, raw_id: Any) -> Club:
        club_id = require_object_id(raw_id, "club_id")
        club = Club.from_document(await self.store.collection(CLUBS).find_one({"id": club_id}))
        if club is None:
            raise NotFound("club not found")
        return club

    async def _event(self, raw_id: Any) -> Event:
        event_id = require_object_id(raw_id, "event_id")
        event = Event.from_document(await self.store.collection(EVENTS).find_one({"id": event_id}))
        if event is None:
            raise NotFound("event not found")
        return event

    @staticmethod
    def _ensure_owner(principal: Principal, club: Club) -> None:
        if principal.role != Role.ADMIN and club.manager_email != principal.email:
            raise Forbidden("club is managed by someone else")

    # =========================================================================
    # PUBLIC VIEWS
    # =========================================================================

    async def list_clubs(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        sort: str = "newest",
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Approved clubs, optionally filtered by name and category"""
        if sort not in CLUB_SORTS:
            raise InvalidArgument(f"sort must be one of {', '.join(CLUB_SORTS)}")

        filter: Dict[str, Any] = {"status": ClubStatus.APPROVED.value}
        if search and search.strip():
            filter["name"] = {"$contains": search.strip()}
        if category and category.strip():
            filter["category"] = category.strip()

        return await self.store.collection(CLUBS).find(
            filter, sort=CLUB_SORTS[sort], limit=_limit(limit)
        )

    async def get_club(self, raw_id: Any) -> Dict[str, Any]:
        club = await self._club(raw_id)
        members = await self.store.collection(MEMBERSHIPS).count_documents({"club_id": club.id})
        return {"id": club.id, **club.to_document(), "member_count": members}

    async def list_events(
        self,
        club_id: Optional[Any] = None,
        upcoming_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        filter: Dict[str, Any] = {}
        if club_id is not None:
            filter["club_id"] = (await self._club(club_id)).id

        limit = _limit(limit)
        if not upcoming_only:
            return await self.store.collection(EVENTS).find(
                filter, sort=[("event_date", ASCENDING)], limit=limit
            )

        # Stored dates are ISO strings, so the cutoff is applied here, before the limit
        docs = await self.store.collection(EVENTS).find(filter, sort=[("event_date", ASCENDING)])
        now = utcnow()
        return [d for d in docs if Event.from_document(d).event_date >= now][:limit]

    async def get_event(self, raw_id: Any) -> Dict[str, Any]:
        event = await self._event(raw_id)
        registered = await self.store.collection(EVENT_REGISTRATIONS).count_documents(
            {"event_id": event.id}
        )
        return {"id": event.id, **event.to_document(), "registration_count": registered}

    # =========================================================================
    # MEMBER VIEWS
    # =========================================================================

    async def member_memberships(self, principal: Principal) -> List[Dict[str, Any]]:
        memberships = await self.store.collection(MEMBERSHIPS).find(
            {"user_email": principal.email}, sort=[("joined_at", DESCENDING)]
        )
        clubs = _by_id(await self.store.collection(CLUBS).find(
            {"id": {"$in": [m["club_id"] for m in memberships]}}
        )) if memberships else {}
        return [{**m, "club": clubs.get(m["club_id"])} for m in memberships]

    async def member_registrations(self, principal: Principal) -> List[Dict[str, Any]]:
        registrations = await self.store.collection(EVENT_REGISTRATIONS).find(
            {"user_email": principal.email}, sort=[("registered_at", DESCENDING)]
        )
        events = _by_id(await self.store.collection(EVENTS).find(
            {"id": {"$in": [r["event_id"] for r in registrations]}}
        )) if registrations else {}
        return [{**r, "event": events.get(r["event_id"])} for r in registrations]

    async def member_payments(self, principal: Principal) -> List[Dict[str, Any]]:
        return await self.store.collection(PAYMENTS).find(
            {"user_email": principal.email}, sort=[("created_at", DESCENDING)]
        )

    # =========================================================================
    # MANAGER OPERATIONS
    # =========================================================================

    async def create_club(self, principal: Principal, data: ClubCreate) -> Dict[str, Any]:
        require_role(principal, Role.MANAGER)
        club = Club(**data.model_dump(), manager_email=principal.email)
        doc = club.to_document()
        club_id = await self.store.collection(CLUBS).insert_one(doc)

        await audit.log_event(
            self.store, AuditEventType.CLUB_CREATED,
            {"club_id": club_id, "name": club.name}, actor=principal.email,
        )
        return {"id": club_id, **doc}

    async def update_club(self, principal: Principal, raw_id: Any, patch: ClubUpdate) -> Dict[str, Any]:
        require_role(principal, Role.MANAGER)
        club = await self._club(raw_id)
        if club.manager_email != principal.email:
            raise Forbidden("only the club's manager can edit it")

        changes = patch.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return {"id": club.id, **club.to_document()}

        updated = club.model_copy(update={**changes, "updated_at": utcnow()})
        doc = updated.to_document()
        await self.store.collection(CLUBS).update_one({"id": club.id}, doc)
        logger.info("club_updated", club_id=club.id, fields=sorted(changes))
        return {"id": club.id, **doc}

    async def manager_clubs(self, principal: Principal) -> List[Dict[str, Any]]:
        require_role(principal, Role.MANAGER)
        return await self.store.collection(CLUBS).find(
            {"manager_email": principal.email}, sort=[("created_at", DESCENDING)]
        )

    async def manager_club(self, principal: Principal, raw_id: Any) -> Dict[str, Any]:
        require_role(principal, Role.MANAGER)
        club = await self._club(raw_id)
        self._ensure_owner(principal, club)
        return await self.get_club(club.id)

    async def create_event(self, principal: Principal, data: EventCreate) -> Dict[str, Any]:
        require_role(principal, Role.MANAGER)
        club = await self._club(data.club_id)
        if club.manager_email != principal.email:
            raise Forbidden("only the club's manager can create events")
        if club.status != ClubStatus.APPROVED:
            raise InvalidState("club is not approved")

        fields = data.model_dump()
        fields["club_id"] = club.id
        if not fields["is_paid"]:
            fields["event_fee"] = 0
        event = Event(**fields, manager_email=principal.email)
        doc = event.to_document()
        event_id = await self.store.collection(EVENTS).insert_one(doc)

        await audit.log_event(
            self.store, AuditEventType.EVENT_CREATED,
            {"event_id": event_id, "club_id": club.id, "title": event.title},
            actor=principal.email,
        )
        return {"id": event_id, **doc}

    async def club_members(self, principal: Principal, raw_id: Any) -> List[Dict[str, Any]]:
        require_role(principal, Role.MANAGER)
        club = await self._club(raw_id)
        self._ensure_owner(principal, club)
        return await self.store.collection(MEMBERSHIPS).find(
            {"club_id": club.id}, sort=[("joined_at", DESCENDING)]
        )

    async def event_registrations(self, principal: Principal, raw_id: Any) -> List[Dict[str, Any]]:
        require_role(principal, Role.MANAGER)
        event = await self._event(raw_id)
        if principal.role != Role.ADMIN and event.manager_email != principal.email:
            raise Forbidden("event is managed by someone else")
        return await self.store.collection(EVENT_REGISTRATIONS).find(
            {"event_id": event.id}, sort=[("registered_at", DESCENDING)]
        )
