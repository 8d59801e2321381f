"""
Bearer token verification and the explicit actor context.

Tokens are issued by the identity service; this module only verifies them.
create_access_token exists for local tooling and tests.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as pyjwt
from pydantic import BaseModel

from app.core.config import settings
from app.core.logging import get_logger
from app.db.models.user import UserRole, ADMIN_ROLES

logger = get_logger(__name__)


class TokenPayload(BaseModel):
    """Contents of the bearer JWT"""
    sub: str
    role: str = UserRole.USER.value
    exp: int  # Unix timestamp


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, passed explicitly into every service call"""
    id: str
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def create_access_token(user_id: str, role: str = UserRole.USER.value, expires_minutes: int | None = None) -> str:
    """Create a signed access token"""
    if not settings.JWT_SECRET_KEY:
        raise ValueError("JWT_SECRET_KEY is not configured - cannot sign tokens")
    minutes = expires_minutes if expires_minutes is not None else settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    payload = {
        "sub": user_id,
        "role": role,
        "exp": int(expire.timestamp()),
    }
    return pyjwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Optional[TokenPayload]:
    """Verify a bearer token - returns None when invalid or expired"""
    if not settings.JWT_SECRET_KEY:
        logger.error("JWT_SECRET_KEY is empty - tokens cannot be verified")
        return None
    try:
        payload = pyjwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return TokenPayload(**payload)
    except pyjwt.InvalidTokenError:
        logger.warning("JWT token invalid or expired")
        return None
    except (KeyError, ValueError) as e:
        logger.warning("JWT payload malformed", extra_data={"error": str(e)})
        return None
