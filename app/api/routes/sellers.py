"""
Seller API Routes - a seller's public storefront
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.database import get_db
from app.domain.services.listing_read_service import ListingReadService, clamp

router = APIRouter()


@router.get("/{seller_id}/listings", summary="Seller's active listings")
async def seller_listings(
    seller_id: str,
    limit: Optional[int] = Query(default=None, ge=1),
    db: AsyncSession = Depends(get_db),
) -> dict:
    limit = clamp(limit, settings.BROWSE_DEFAULT_PAGE_SIZE, settings.BROWSE_MAX_PAGE_SIZE)
    items = await ListingReadService(db).seller_listings(seller_id, limit=limit)
    return {"success": True, "data": [item.to_dict() for item in items]}
