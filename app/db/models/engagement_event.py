"""
Engagement Event Model - append-only view/bump/click log
"""
import enum
import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, Index, Enum as SQLEnum

from app.db.database import Base, utcnow


class EngagementType(str, enum.Enum):
    VIEW = "view"
    BUMP = "bump"
    CLICK = "click"


class EngagementEvent(Base):
    __tablename__ = "engagement_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # no FK: events outlive hard-deleted listings
    item_id = Column(String(36), nullable=False)
    event_type = Column(
        SQLEnum(EngagementType, name="engagement_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False
    )
    actor_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    session_id = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_engagement_events_item_type", "item_id", "event_type"),
    )
