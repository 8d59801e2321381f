"""
Admin API Routes - moderation queue and listing administration

Every endpoint requires an administrator token.
"""
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import require_admin
from app.core.auth import Actor
from app.core.config import settings
from app.db.database import get_db
from app.domain.services.moderation_service import ModerationService

router = APIRouter()


class RejectRequest(BaseModel):
    reason: str = ""


class FeatureRequest(BaseModel):
    featured: bool


def _status(item) -> dict:
    return {"id": item.id, "status": item.status.value, "is_featured": bool(item.is_featured)}


@router.get("/pending", summary="Moderation queue (oldest first)")
async def pending_listings(
    limit: int = Query(default=settings.BROWSE_DEFAULT_PAGE_SIZE, ge=1, le=settings.BROWSE_MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items = await ModerationService(db).pending_queue(limit, offset)
    return {"success": True, "data": [item.to_dict() for item in items]}


@router.get("/stats", summary="Listing counts per status")
async def listing_stats(
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return {"success": True, "data": await ModerationService(db).stats()}


@router.post("/{listing_id}/approve", summary="Approve a pending listing")
async def approve_listing(
    listing_id: str,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    item = await ModerationService(db).approve(admin, listing_id)
    return {"success": True, "data": _status(item)}


@router.post("/{listing_id}/reject", summary="Reject a pending listing with a reason")
async def reject_listing(
    listing_id: str,
    request: RejectRequest,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    item = await ModerationService(db).reject(admin, listing_id, request.reason)
    return {"success": True, "data": _status(item)}


@router.post("/{listing_id}/feature", summary="Promote or demote a listing")
async def feature_listing(
    listing_id: str,
    request: FeatureRequest,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    item = await ModerationService(db).set_featured(listing_id, request.featured)
    return {"success": True, "data": _status(item)}


@router.delete("/{listing_id}", summary="Remove a listing (terminal)")
async def remove_listing(
    listing_id: str,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    item = await ModerationService(db).remove(admin, listing_id)
    return {"success": True, "data": _status(item)}
