"""
User Model - sellers and administrators
"""
import enum
import uuid
from sqlalchemy import Column, String, DateTime, Enum as SQLEnum, Boolean

from app.db.database import Base, utcnow


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


ADMIN_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})


class User(Base):
    """Marketplace user. Identity itself is issued elsewhere; this row carries the role."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    full_name = Column(String(150), nullable=True)
    phone = Column(String(20), nullable=True, index=True)
    role = Column(
        SQLEnum(
            UserRole,
            name="user_role",
            values_callable=lambda x: [e.value for e in x]
        ),
        default=UserRole.USER,
        nullable=False,
        index=True
    )
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES
