"""
Listing API Routes - browse, detail, creation and owner lifecycle actions
"""
import json
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header, Query
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_actor, get_optional_actor
from app.core.auth import Actor
from app.core.exceptions import ValidationException
from app.core.logging import get_logger
from app.db.database import get_db
from app.db.listing_query import ListingFilters
from app.db.listing_repository import ListingRepository
from app.db.models.marketplace_item import ItemCondition
from app.domain.services.engagement_service import EngagementService
from app.domain.services.listing_read_service import ListingReadService
from app.domain.services.listing_service import ListingService
from app.state_machine.states import ListingAction

logger = get_logger(__name__)

router = APIRouter()


class TransitionRequest(BaseModel):
    """Owner lifecycle action"""
    action: ListingAction


class ViewRequest(BaseModel):
    session_id: Optional[str] = None


def _parse_filters(raw: dict[str, Any]) -> ListingFilters:
    try:
        return ListingFilters.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        message = first.get("msg", "Invalid filter")
        raise ValidationException(message, field=field) from e


def _parse_attributes(raw: Optional[str]) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError as e:
        raise ValidationException("attributes must be a JSON object", field="attributes") from e
    if not isinstance(value, dict):
        raise ValidationException("attributes must be a JSON object", field="attributes")
    return value


@router.get(
    "",
    summary="Browse listings",
    description="Active, unexpired listings matching every supplied filter.",
)
async def query_listings(
    category: Optional[str] = None,
    area_id: Optional[int] = None,
    district_id: Optional[int] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    condition: Optional[ItemCondition] = None,
    q: Optional[str] = Query(default=None, description="Search in title and description"),
    attributes: Optional[str] = Query(default=None, description='JSON object, e.g. {"brand": "toyota"}'),
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> dict:
    filters = _parse_filters({
        "category": category,
        "area_id": area_id,
        "district_id": district_id,
        "min_price": min_price,
        "max_price": max_price,
        "condition": condition,
        "query": q,
        "attributes": _parse_attributes(attributes),
    })
    result = await ListingReadService(db).query_listings(filters, limit, offset)
    return {"success": True, "data": result}


@router.get("/mine", summary="My listings")
async def my_listings(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items = await ListingRepository(db).list_by_seller(actor.id)
    return {"success": True, "data": [item.to_dict() for item in items]}


@router.get("/{slug}", summary="Listing detail by slug or id")
async def listing_detail(
    slug: str,
    viewer: Optional[Actor] = Depends(get_optional_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    detail = await ListingReadService(db).listing_detail(slug, viewer)
    return {"success": True, "data": detail}


@router.post(
    "",
    status_code=201,
    summary="Create a listing",
    description=(
        "Rate limited per seller. Send an Idempotency-Key header to make "
        "retries safe: a repeated key returns the first response."
    ),
)
async def create_listing(
    payload: dict[str, Any] = Body(...),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await ListingService(db).create_listing(actor, payload, idempotency_key)


@router.put("/{listing_id}", summary="Update listing content")
async def update_listing(
    listing_id: str,
    payload: dict[str, Any] = Body(...),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await ListingService(db).update_listing(actor, listing_id, payload)


@router.post("/{listing_id}/transition", summary="Mark sold, reactivate, relist or delete")
async def transition_listing(
    listing_id: str,
    request: TransitionRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await ListingService(db).transition_listing(actor, listing_id, request.action)


@router.post("/{listing_id}/bump", summary="Move an active listing to the top of recency ordering")
async def bump_listing(
    listing_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await ListingService(db).bump_listing(actor, listing_id)


@router.post("/{listing_id}/views", status_code=202, summary="Record a listing view")
async def record_view(
    listing_id: str,
    request: Optional[ViewRequest] = None,
    viewer: Optional[Actor] = Depends(get_optional_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    recorded = await EngagementService(db).record_view(
        listing_id,
        actor_id=viewer.id if viewer else None,
        session_id=request.session_id if request else None,
    )
    return {"success": True, "data": {"recorded": recorded}}
