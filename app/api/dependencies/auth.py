"""
FastAPI dependencies resolving the current actor from a bearer JWT.

Usage:
    @router.post("/listings")
    async def create(
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db),
    ):
        ...
"""
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Actor, verify_token
from app.core.exceptions import ForbiddenError, UnauthenticatedError
from app.core.logging import get_logger, set_actor_id
from app.db.database import get_db
from app.db.models.user import User, UserRole

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def _resolve_actor(
    credentials: Optional[HTTPAuthorizationCredentials],
    db: AsyncSession,
) -> Optional[Actor]:
    if credentials is None or not credentials.credentials:
        return None

    token_data = verify_token(credentials.credentials)
    if token_data is None:
        return None

    result = await db.execute(
        select(User.id, User.role, User.is_active).where(User.id == token_data.sub)
    )
    row = result.one_or_none()
    if row is None or not row.is_active:
        logger.warning(
            "Token for unknown or inactive user",
            extra_data={"user_id": token_data.sub, "user_found": row is not None},
        )
        return None

    # the stored role wins over the role claimed in the token
    actor = Actor(id=row.id, role=UserRole(row.role))
    set_actor_id(actor.id)
    return actor


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """Authenticated actor for write paths. Raises 401 otherwise."""
    actor = await _resolve_actor(credentials, db)
    if actor is None:
        raise UnauthenticatedError()
    return actor


async def get_optional_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Optional[Actor]:
    """Actor when a valid token is present, None for anonymous reads"""
    return await _resolve_actor(credentials, db)


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        logger.warning("Admin endpoint denied", extra_data={"actor_id": actor.id})
        raise ForbiddenError()
    return actor
