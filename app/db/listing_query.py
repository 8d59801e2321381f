"""
Listing Query Builder - translates a browse filter into SQLAlchemy predicates.

All predicates are ANDed on top of the "active, unexpired" base predicate.
Default ordering: is_featured desc, last_bump_at desc, created_at desc
(id desc as a final tie-break so pagination is deterministic).
"""
import re
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy import Boolean, Select, and_, func, or_, select, type_coerce
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.expression import ColumnElement

from app.core.validation import TextSanitizer
from app.db.models.area import Area
from app.db.models.marketplace_item import MarketplaceItem, ListingStatus, ItemCondition

AttributeValue = Union[bool, int, float, str]

_ATTRIBUTE_KEY = re.compile(r"^[\w\-]{1,50}$")
MAX_ATTRIBUTE_FILTERS = 10


class ListingFilters(BaseModel):
    """Open browse filter. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    category: Optional[str] = Field(default=None, max_length=100)
    area_id: Optional[int] = None
    district_id: Optional[int] = None
    min_price: Optional[float] = Field(default=None, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)
    condition: Optional[ItemCondition] = None
    query: Optional[str] = Field(default=None, max_length=200)
    attributes: dict[str, AttributeValue] = Field(default_factory=dict)

    @field_validator("category", "query", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("query", mode="after")
    @classmethod
    def strip_quotes(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return TextSanitizer.strip_quotes(v) or None

    @field_validator("attributes", mode="after")
    @classmethod
    def validate_attribute_keys(cls, v: dict[str, AttributeValue]) -> dict[str, AttributeValue]:
        if len(v) > MAX_ATTRIBUTE_FILTERS:
            raise ValueError(f"At most {MAX_ATTRIBUTE_FILTERS} attribute filters are allowed")
        for key in v:
            if not _ATTRIBUTE_KEY.match(key):
                raise ValueError(f"Invalid attribute key: {key}")
        return v

    @model_validator(mode="after")
    def validate_price_range(self) -> "ListingFilters":
        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise ValueError("min_price cannot exceed max_price")
        return self

    def cache_params(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


def active_unexpired(now: datetime) -> list:
    """Base predicate: status active and not soft-expired"""
    return [
        MarketplaceItem.status == ListingStatus.ACTIVE,
        or_(MarketplaceItem.expires_at.is_(None), MarketplaceItem.expires_at > now),
    ]


class AttributesContain(ColumnElement):
    """attributes contains every (key, value) pair of a partial map.

    PostgreSQL renders JSONB containment (@>). Other dialects check each key
    with json_type/json_extract, so a value only matches the same JSON type.
    """

    type = Boolean()
    inherit_cache = False

    def __init__(self, attributes: dict[str, AttributeValue]):
        self.attributes = dict(attributes)


_JSON_NUMBER_TYPES = ("integer", "real")


def _attribute_clause(key: str, value: AttributeValue):
    path = f'$."{key}"'
    json_type = func.json_type(MarketplaceItem.attributes, path)
    # bool before int: bool is a subclass of int
    if isinstance(value, bool):
        return json_type == ("true" if value else "false")
    element = func.json_extract(MarketplaceItem.attributes, path)
    if isinstance(value, (int, float)):
        return and_(json_type.in_(_JSON_NUMBER_TYPES), element == value)
    return and_(json_type == "text", element == value)


@compiles(AttributesContain)
def _compile_attributes_contain(element: AttributesContain, compiler, **kw) -> str:
    clauses = [_attribute_clause(key, value) for key, value in sorted(element.attributes.items())]
    return compiler.process(and_(*clauses).self_group(), **kw)


@compiles(AttributesContain, "postgresql")
def _compile_attributes_contain_postgresql(element: AttributesContain, compiler, **kw) -> str:
    containment = MarketplaceItem.attributes.op("@>", return_type=Boolean)(
        type_coerce(element.attributes, JSONB())
    )
    return compiler.process(containment, **kw)


def attribute_predicate(key: str, value: AttributeValue) -> AttributesContain:
    return AttributesContain({key: value})


def attributes_predicate(attributes: dict[str, AttributeValue]) -> AttributesContain:
    return AttributesContain(attributes)


def build_listing_query(filters: ListingFilters, now: datetime) -> Select:
    """Unordered, unpaginated select of listings matching the filters"""
    stmt = select(MarketplaceItem)
    conditions = active_unexpired(now)

    if filters.category:
        conditions.append(MarketplaceItem.category == filters.category)
    if filters.area_id is not None:
        conditions.append(MarketplaceItem.area_id == filters.area_id)
    if filters.district_id is not None:
        stmt = stmt.join(Area, Area.id == MarketplaceItem.area_id)
        conditions.append(Area.district_id == filters.district_id)
    if filters.min_price is not None:
        conditions.append(MarketplaceItem.price >= filters.min_price)
    if filters.max_price is not None:
        conditions.append(MarketplaceItem.price <= filters.max_price)
    if filters.condition is not None:
        conditions.append(MarketplaceItem.condition == filters.condition)
    if filters.query:
        conditions.append(or_(
            MarketplaceItem.title.icontains(filters.query, autoescape=True),
            MarketplaceItem.description.icontains(filters.query, autoescape=True),
        ))
    if filters.attributes:
        conditions.append(attributes_predicate(filters.attributes))

    return stmt.where(and_(*conditions))


def default_order(stmt: Select) -> Select:
    return stmt.order_by(
        MarketplaceItem.is_featured.desc(),
        MarketplaceItem.last_bump_at.desc(),
        MarketplaceItem.created_at.desc(),
        MarketplaceItem.id.desc(),
    )


def count_query(stmt: Select) -> Select:
    """Total count for the same predicate set"""
    return select(func.count()).select_from(stmt.order_by(None).subquery())
