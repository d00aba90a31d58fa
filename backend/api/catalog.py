# api/catalog.py
# ============================================================================
# CLUBSPHERE: PUBLIC CATALOG ROUTES
# ============================================================================

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_catalog
from services.catalog import CatalogService

router = APIRouter(prefix="/api", tags=["catalog"])


@router.get("/clubs")
async def list_clubs(
    search: Optional[str] = None,
    category: Optional[str] = None,
    sort: str = "newest",
    limit: Optional[int] = Query(default=None, ge=1),
    catalog: CatalogService = Depends(get_catalog),
):
    return await catalog.list_clubs(search=search, category=category, sort=sort, limit=limit)


@router.get("/clubs/{club_id}")
async def get_club(club_id: str, catalog: CatalogService = Depends(get_catalog)):
    return await catalog.get_club(club_id)


@router.get("/clubs/{club_id}/events")
async def club_events(
    club_id: str,
    upcoming: bool = False,
    catalog: CatalogService = Depends(get_catalog),
):
    return await catalog.list_events(club_id=club_id, upcoming_only=upcoming)


@router.get("/events")
async def list_events(
    club_id: Optional[str] = None,
    upcoming: bool = False,
    limit: Optional[int] = Query(default=None, ge=1),
    catalog: CatalogService = Depends(get_catalog),
):
    return await catalog.list_events(club_id=club_id, upcoming_only=upcoming, limit=limit)


@router.get("/events/{event_id}")
async def get_event(event_id: str, catalog: CatalogService = Depends(get_catalog)):
    return await catalog.get_event(event_id)
