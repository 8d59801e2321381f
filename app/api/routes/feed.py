"""
Feed API Routes - home feed, home sections and recommendations
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_db
from app.domain.services.feed_service import FeedSection, FeedSortType
from app.domain.services.listing_read_service import ListingReadService
from app.domain.services.recommendation_service import RecommendationHints, RecommendationService

router = APIRouter()


@router.get(
    "/home",
    summary="Home feed",
    description=(
        "random (default): up to two promoted listings first, then a shuffled "
        "sample of recent listings. most_viewed and lowest_price are plain orderings."
    ),
)
async def home_feed(
    limit: Optional[int] = Query(default=None, ge=1),
    sort_type: FeedSortType = FeedSortType.RANDOM,
    db: AsyncSession = Depends(get_db),
) -> dict:
    items = await ListingReadService(db).home_feed(limit, sort_type)
    return {"success": True, "data": items}


@router.get("/sections/{section}", summary="Home page section")
async def home_section(
    section: FeedSection,
    limit: Optional[int] = Query(default=None, ge=1),
    area_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
) -> dict:
    items = await ListingReadService(db).section(section, limit, area_id)
    return {"success": True, "data": items}


@router.post(
    "/recommendations",
    summary="Recommendations from browsing hints",
    description="Spotlight, then latest viewed subtype, then latest category, then the default category.",
)
async def recommendations(
    hints: RecommendationHints,
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await RecommendationService(db).recommend(hints)
    return {"success": True, "data": result.to_dict()}
