"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- In-memory Redis replacement
- Celery task capture (no broker in tests)
- Test data factories (users, areas, listings) and bearer tokens
"""
# JWT_SECRET_KEY must exist before importing app - the settings validator requires it when DEBUG=False
import os
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-testing-only-do-not-use-in-production")

import builtins
import fnmatch
import uuid
from datetime import timedelta
from typing import Any, AsyncGenerator
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import Actor, create_access_token
from app.core.config import settings
from app.db.database import Base, get_db, utcnow
from app.db.models.area import Area, District
from app.db.models.marketplace_item import MarketplaceItem, ListingStatus, ItemCondition, PriceType
from app.db.models.user import User, UserRole
from app.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# No custom event_loop fixture: pytest-asyncio handles it with asyncio_mode=auto


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Redis
# ============================================================================

class FakeRedis:
    """In-memory Redis replacement with a compatible interface and TTL tracking"""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._sets: dict[str, set[str]] = {}
        self._ttls: dict[str, int] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        """SET with NX (only if missing) and EX (expiry in seconds)"""
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self._ttls[key] = ex
        return True

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self._store[key] = value
        self._ttls[key] = ttl

    async def incr(self, key: str) -> int:
        """Atomic INCR - starts at 1 when the key is missing"""
        current = self._store.get(key)
        new_val = int(current) + 1 if current is not None else 1
        self._store[key] = str(new_val)
        return new_val

    async def expire(self, key: str, ttl: int) -> None:
        """Set a TTL on an existing key"""
        if key in self._store or key in self._sets:
            self._ttls[key] = ttl

    async def ttl(self, key: str) -> int:
        if key not in self._store and key not in self._sets:
            return -2
        return self._ttls.get(key, -1)

    async def sadd(self, key: str, *members: str) -> int:
        bucket = self._sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    async def smembers(self, key: str) -> builtins.set[str]:
        return set(self._sets.get(key, set()))

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self._store.pop(key, None) is not None or self._sets.pop(key, None) is not None:
                deleted += 1
            self._ttls.pop(key, None)
        return deleted

    async def aclose(self) -> None:
        self._store.clear()
        self._sets.clear()
        self._ttls.clear()

    # test helpers

    def expire_now(self, key: str) -> None:
        """Simulate the window elapsing"""
        self._store.pop(key, None)
        self._sets.pop(key, None)
        self._ttls.pop(key, None)

    def keys(self, pattern: str = "*") -> list[str]:
        return [k for k in [*self._store, *self._sets] if fnmatch.fnmatch(k, pattern)]


@pytest.fixture(autouse=True)
def fake_redis():
    """Replace get_redis with FakeRedis at every import site"""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("app.core.redis_client.get_redis", _get_fake_redis), \
         patch("app.core.rate_limit.get_redis", _get_fake_redis), \
         patch("app.core.cache.get_redis", _get_fake_redis), \
         patch("app.domain.services.health_service.get_redis", _get_fake_redis):
        yield _fake


# ============================================================================
# Celery
# ============================================================================

@pytest.fixture(autouse=True)
def celery_tasks():
    """Capture .delay() calls instead of talking to a broker"""
    with patch("app.workers.tasks.notify_administrators", new=MagicMock()) as notify_admins, \
         patch("app.workers.tasks.notify_actor", new=MagicMock()) as notify_actor:
        yield {"notify_administrators": notify_admins.delay, "notify_actor": notify_actor.delay}


# ============================================================================
# Settings
# ============================================================================

_TEST_JWT_SECRET = "test-jwt-secret-key-for-testing-only-do-not-use-in-production"


@pytest.fixture(autouse=True)
def set_test_settings():
    """Deterministic policy values for tests"""
    with patch.object(settings, "JWT_SECRET_KEY", _TEST_JWT_SECRET), \
         patch.object(settings, "JWT_ALGORITHM", "HS256"), \
         patch.object(settings, "LISTING_CREATE_RATE_LIMIT", 3), \
         patch.object(settings, "LISTING_CREATE_RATE_WINDOW_SECONDS", 3600), \
         patch.object(settings, "IDEMPOTENCY_WAIT_SECONDS", 0.3), \
         patch.object(settings, "IDEMPOTENCY_POLL_INTERVAL_SECONDS", 0.05), \
         patch.object(settings, "FEED_FEATURED_SLOTS", 2), \
         patch.object(settings, "FEED_OVERFETCH_FACTOR", 3), \
         patch.object(settings, "RECOMMENDATION_DEFAULT_CATEGORY", "vehicles"):
        yield


# ============================================================================
# Test Data Factories
# ============================================================================

def listing_payload(**overrides: Any) -> dict[str, Any]:
    """A valid create/update body"""
    payload = {
        "title": "Toyota Corolla 2018",
        "description": "Well maintained, single owner, full service history.",
        "price": 450000,
        "price_type": "negotiable",
        "category": "vehicles",
        "condition": "good",
        "location": "Nasr City",
        "seller_phone": "01012345678",
        "images": ["https://cdn.example.com/storage/v1/object/public/marketplace/u1/car.jpg"],
        "attributes": {"brand": "toyota", "year": 2018},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for creating test users"""
    async def _create_user(
        role: UserRole = UserRole.USER,
        full_name: str = "Test User",
        phone: str = "+201012345678",
        is_active: bool = True,
    ) -> User:
        user = User(
            id=str(uuid.uuid4()),
            full_name=full_name,
            phone=phone,
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def area_factory(db_session: AsyncSession):
    """Factory for districts and areas"""
    async def _create_area(name: str, district: District | None = None) -> Area:
        if district is None:
            district = District(name=f"{name} district")
            db_session.add(district)
            await db_session.flush()
        area = Area(name=name, district_id=district.id)
        db_session.add(area)
        await db_session.commit()
        return area

    return _create_area


@pytest.fixture
def listing_factory(db_session: AsyncSession):
    """Factory for persisted listings in any state"""
    counter = {"n": 0}

    async def _create_listing(
        seller_id: str,
        status: ListingStatus = ListingStatus.ACTIVE,
        title: str | None = None,
        category: str = "vehicles",
        price: float = 1000,
        condition: ItemCondition | None = ItemCondition.GOOD,
        attributes: dict | None = None,
        images: list[str] | None = None,
        area_id: int | None = None,
        is_featured: bool = False,
        view_count: int = 0,
        age_minutes: int = 0,
        expires_in_minutes: int | None = None,
    ) -> MarketplaceItem:
        counter["n"] += 1
        now = utcnow() - timedelta(minutes=age_minutes)
        item = MarketplaceItem(
            id=str(uuid.uuid4()),
            slug=f"listing-{counter['n']}-{uuid.uuid4().hex[:6]}",
            title=title or f"Listing number {counter['n']}",
            description="A listing used in tests, long enough.",
            price=price,
            price_type=PriceType.FIXED,
            category=category,
            condition=condition,
            images=images if images is not None else ["https://cdn.example.com/a.jpg"],
            attributes=attributes or {},
            location="Maadi",
            area_id=area_id,
            seller_id=seller_id,
            seller_phone="+201012345678",
            seller_whatsapp="+201012345678",
            status=status,
            is_featured=is_featured,
            view_count=view_count,
            created_at=now,
            updated_at=now,
            last_bump_at=now,
            expires_at=(
                utcnow() + timedelta(minutes=expires_in_minutes)
                if expires_in_minutes is not None else None
            ),
        )
        db_session.add(item)
        await db_session.commit()
        return item

    return _create_listing


# ============================================================================
# Sample Test Data
# ============================================================================

@pytest.fixture
async def seller(user_factory) -> User:
    return await user_factory(full_name="Sample Seller")


@pytest.fixture
async def other_seller(user_factory) -> User:
    return await user_factory(full_name="Other Seller", phone="+201098765432")


@pytest.fixture
async def admin(user_factory) -> User:
    return await user_factory(role=UserRole.ADMIN, full_name="Sample Admin")


@pytest.fixture
def seller_actor(seller: User) -> Actor:
    return Actor(id=seller.id, role=UserRole.USER)


@pytest.fixture
def other_actor(other_seller: User) -> Actor:
    return Actor(id=other_seller.id, role=UserRole.USER)


@pytest.fixture
def admin_actor(admin: User) -> Actor:
    return Actor(id=admin.id, role=UserRole.ADMIN)


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(user.id, user.role.value)
    return {"Authorization": f"Bearer {token}"}
