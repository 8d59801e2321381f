"""
Recommendation Service - personalized picks from client browsing hints.

Sources are tried in strict order and the first non-empty result wins:
    spotlight -> most recent subtype -> most recent category -> default category
Hints come from the client and are untrusted: lists are truncated to
RECOMMENDATION_MAX_SIGNALS and every string is length-capped. A failed
lookup is logged and the next source is tried.
"""
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.listing_query import AttributeValue, ListingFilters, attribute_predicate, build_listing_query
from app.db.listing_repository import ListingRepository
from app.db.models.marketplace_item import MarketplaceItem

logger = get_logger(__name__)

_TYPE_KEY = re.compile(r"^[\w\-]{1,50}$")


class RecommendationSource(str, Enum):
    SPOTLIGHT = "spotlight"
    SUBTYPE = "subtype"
    CATEGORY = "category"
    DEFAULT = "default"


class SubtypeSignal(BaseModel):
    """(category, attribute key, attribute value) the visitor looked at"""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    category: str = Field(min_length=1, max_length=100)
    type_key: str = Field(min_length=1, max_length=50)
    type_value: AttributeValue
    label: Optional[str] = Field(default=None, max_length=100)

    @field_validator("type_key")
    @classmethod
    def validate_type_key(cls, v: str) -> str:
        if not _TYPE_KEY.match(v):
            raise ValueError("Invalid attribute key")
        return v

    @field_validator("type_value")
    @classmethod
    def validate_type_value(cls, v: AttributeValue) -> AttributeValue:
        if isinstance(v, str) and len(v) > 200:
            raise ValueError("Attribute value is too long")
        return v


class RecommendationHints(BaseModel):
    """Client-held browsing history, most recent first"""

    model_config = ConfigDict(extra="ignore")

    spotlight: Optional[SubtypeSignal] = None
    viewed_subtypes: list[SubtypeSignal] = Field(default_factory=list)
    viewed_categories: list[str] = Field(default_factory=list)
    exclude_ids: list[str] = Field(default_factory=list)

    @field_validator("viewed_subtypes", "exclude_ids", mode="before")
    @classmethod
    def truncate(cls, v: Any) -> Any:
        if isinstance(v, list):
            return v[:settings.RECOMMENDATION_MAX_SIGNALS]
        return v

    @field_validator("viewed_categories", mode="before")
    @classmethod
    def clean_categories(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return v
        cleaned = [c.strip()[:100] for c in v if isinstance(c, str) and c.strip()]
        return cleaned[:settings.RECOMMENDATION_MAX_SIGNALS]

    @field_validator("exclude_ids", mode="after")
    @classmethod
    def cap_ids(cls, v: list[str]) -> list[str]:
        return [item_id[:36] for item_id in v if item_id]


@dataclass
class Recommendation:
    source: RecommendationSource
    label: str
    items: list[MarketplaceItem] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "label": self.label,
            "items": [item.to_dict() for item in self.items],
        }


class RecommendationService:
    """Fallback chain over repository lookups"""

    def __init__(self, db: AsyncSession, limit: int | None = None):
        self.db = db
        self.repository = ListingRepository(db)
        self.limit = limit or settings.RECOMMENDATION_LIMIT

    async def recommend(self, hints: RecommendationHints, now: datetime | None = None) -> Recommendation:
        now = now or utcnow()
        excluded = list(hints.exclude_ids)

        if hints.spotlight is not None:
            items = await self._attempt(
                RecommendationSource.SPOTLIGHT,
                self._by_subtype(hints.spotlight, excluded, now),
            )
            if items:
                return Recommendation(RecommendationSource.SPOTLIGHT, self._subtype_label(hints.spotlight), items)

        if hints.viewed_subtypes:
            latest = hints.viewed_subtypes[0]
            items = await self._attempt(
                RecommendationSource.SUBTYPE,
                self._by_subtype(latest, excluded, now),
            )
            if items:
                return Recommendation(RecommendationSource.SUBTYPE, self._subtype_label(latest), items)

        if hints.viewed_categories:
            category = hints.viewed_categories[0]
            items = await self._attempt(
                RecommendationSource.CATEGORY,
                self._by_category(category, excluded, now),
            )
            if items:
                return Recommendation(RecommendationSource.CATEGORY, category, items)

        default_category = settings.RECOMMENDATION_DEFAULT_CATEGORY
        items = await self._attempt(
            RecommendationSource.DEFAULT,
            self._by_category(default_category, excluded, now),
        )
        return Recommendation(
            RecommendationSource.DEFAULT,
            settings.RECOMMENDATION_DEFAULT_LABEL or default_category,
            items,
        )

    async def _attempt(self, source: RecommendationSource, lookup) -> list[MarketplaceItem]:
        try:
            return await lookup
        except (SQLAlchemyError, OSError) as e:
            logger.warning(
                "Recommendation lookup failed, trying next source",
                extra_data={"source": source.value, "error": str(e)},
            )
            await self.db.rollback()
            return []

    async def _by_subtype(
        self,
        signal: SubtypeSignal,
        excluded: list[str],
        now: datetime,
    ) -> list[MarketplaceItem]:
        stmt = build_listing_query(ListingFilters(category=signal.category), now).where(
            attribute_predicate(signal.type_key, signal.type_value)
        )
        return await self._newest(stmt, excluded)

    async def _by_category(self, category: str, excluded: list[str], now: datetime) -> list[MarketplaceItem]:
        stmt = build_listing_query(ListingFilters(category=category), now)
        return await self._newest(stmt, excluded)

    async def _newest(self, stmt, excluded: list[str]) -> list[MarketplaceItem]:
        if excluded:
            stmt = stmt.where(MarketplaceItem.id.not_in(excluded))
        stmt = stmt.order_by(MarketplaceItem.created_at.desc(), MarketplaceItem.id.desc())
        return await self.repository.fetch(stmt.limit(self.limit))

    @staticmethod
    def _subtype_label(signal: SubtypeSignal) -> str:
        return signal.label or str(signal.type_value)
