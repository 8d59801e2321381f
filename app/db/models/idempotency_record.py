"""
Idempotency Record Model - one row per (key, actor) for listing creation.

The composite primary key is the uniqueness guarantee: the first request
inserts a processing row, duplicates hit IntegrityError. Only completed
rows replay; an expired row may be reclaimed by a new request.
"""
import enum

from sqlalchemy import Column, String, DateTime, Index, Enum as SQLEnum

from app.db.database import Base, JSONType, utcnow


class IdempotencyStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_keys"

    key = Column(String(200), primary_key=True)
    actor_id = Column(String(36), primary_key=True)
    status = Column(
        SQLEnum(IdempotencyStatus, name="idempotency_status", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=IdempotencyStatus.PROCESSING
    )
    response_payload = Column(JSONType, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_idempotency_keys_expires_at", "expires_at"),
    )
