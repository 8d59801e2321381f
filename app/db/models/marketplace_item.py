"""
Marketplace Item Model - classified listings
"""
import enum
import uuid
from sqlalchemy import (
    Column, Integer, String, DateTime, Enum as SQLEnum, Numeric, ForeignKey, Text, Boolean, Index,
)

from app.db.database import Base, JSONType, utcnow


class ListingStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SOLD = "sold"
    REJECTED = "rejected"
    REMOVED = "removed"


class PriceType(str, enum.Enum):
    FIXED = "fixed"
    NEGOTIABLE = "negotiable"
    CONTACT = "contact"


class ItemCondition(str, enum.Enum):
    NEW = "new"
    LIKE_NEW = "like_new"
    GOOD = "good"
    FAIR = "fair"
    FOR_PARTS = "for_parts"


def _enum(enum_cls: type[enum.Enum], name: str) -> SQLEnum:
    # stores 'active' rather than 'ACTIVE'
    return SQLEnum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


class MarketplaceItem(Base):
    """A single classified ad"""

    __tablename__ = "marketplace_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    slug = Column(String(255), unique=True, nullable=False, index=True)

    # Content
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    price_type = Column(_enum(PriceType, "price_type"), default=PriceType.FIXED, nullable=False)
    category = Column(String(100), nullable=False, index=True)
    condition = Column(_enum(ItemCondition, "item_condition"), nullable=True)
    images = Column(JSONType, nullable=False, default=list)
    attributes = Column(JSONType, nullable=False, default=dict)

    # Location
    location = Column(String(255), nullable=False)
    area_id = Column(Integer, ForeignKey("areas.id"), nullable=True, index=True)

    # Ownership & contact
    seller_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    seller_phone = Column(String(20), nullable=False)
    seller_whatsapp = Column(String(20), nullable=True)

    # Lifecycle
    status = Column(_enum(ListingStatus, "listing_status"), default=ListingStatus.PENDING, nullable=False, index=True)
    is_featured = Column(Boolean, default=False, nullable=False)
    rejection_reason = Column(Text, nullable=True)
    view_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    last_bump_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index(
            "ix_marketplace_items_feed_order",
            "status", "is_featured", "last_bump_at", "created_at",
        ),
    )

    def to_dict(self) -> dict:
        """Public representation used by API responses and the read cache"""
        return {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "price": float(self.price) if self.price is not None else None,
            "price_type": self.price_type.value if self.price_type else None,
            "category": self.category,
            "condition": self.condition.value if self.condition else None,
            "images": list(self.images or []),
            "attributes": dict(self.attributes or {}),
            "location": self.location,
            "area_id": self.area_id,
            "seller_id": self.seller_id,
            "seller_phone": self.seller_phone,
            "seller_whatsapp": self.seller_whatsapp,
            "status": self.status.value if self.status else None,
            "is_featured": bool(self.is_featured),
            "rejection_reason": self.rejection_reason,
            "view_count": self.view_count or 0,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "last_bump_at": self.last_bump_at.isoformat() if self.last_bump_at else None,
        }
