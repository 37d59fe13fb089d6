import os

# Settings are read at import time; point them at throwaway values first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["API_KEY_PEPPER"] = "test-pepper"
os.environ["WEBHOOK_SIGNING_SECRET"] = "test-signing-secret"
os.environ["ENABLE_DEV_ENDPOINTS"] = "true"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
import uuid

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.db.base_class import Base
from app.models import ApiKey, Tenant, User
from app.models.enums import ApiScope, SubscriptionTier
from app.security import generate_api_key, hash_api_key
from app.services.rate_limiter import DatabaseRateLimiter, RateLimitResult

WEBHOOK_URL = "https://hooks.example.com/referrals"


class StubRateLimiter:
    """Allows everything except keys starting with one of ``denied_prefixes``."""

    def __init__(self, denied_prefixes: Tuple[str, ...] = (), retry_after_seconds: int = 42):
        self.denied_prefixes = denied_prefixes
        self.retry_after_seconds = retry_after_seconds
        self.calls: List[str] = []
        self.counts: Dict[str, int] = {}

    async def check_and_increment(self, tenant_id, key, limit, window_seconds=None) -> RateLimitResult:
        self.calls.append(key)
        self.counts[key] = self.counts.get(key, 0) + 1
        if key.startswith(self.denied_prefixes):
            return RateLimitResult(allowed=False, limit=limit, count=limit + 1, retry_after_seconds=self.retry_after_seconds)
        return RateLimitResult(allowed=True, limit=limit, count=self.counts[key], retry_after_seconds=0)


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def naive(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive UTC datetimes."""
    if dt is None:
        return None
    return dt.replace(tzinfo=None) if dt.tzinfo else dt


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def rate_limiter():
    return StubRateLimiter()


@pytest_asyncio.fixture
async def tenant(db):
    tenant = Tenant(slug="acme", name="Acme", webhook_url=WEBHOOK_URL, referral_settings=None)
    db.add(tenant)
    await db.commit()
    return tenant


@pytest_asyncio.fixture
async def referrer(db, tenant):
    user = User(
        tenant_id=tenant.id,
        external_user_id="u1",
        plan=SubscriptionTier.PRO.value,
        referral_code="REF123",
    )
    db.add(user)
    await db.commit()
    return user


async def create_api_key(db: AsyncSession, tenant_id: uuid.UUID, scopes: List[ApiScope]) -> str:
    raw_key = generate_api_key()
    db.add(ApiKey(
        tenant_id=tenant_id,
        key_hash=hash_api_key(raw_key),
        label="test",
        scopes=[s.value for s in scopes],
    ))
    await db.commit()
    return raw_key


@pytest_asyncio.fixture
async def write_key(db, tenant):
    return await create_api_key(db, tenant.id, [ApiScope.WRITE])


@pytest_asyncio.fixture
async def admin_key(db, tenant):
    return await create_api_key(db, tenant.id, [ApiScope.ADMIN])


@pytest_asyncio.fixture
async def read_key(db, tenant):
    return await create_api_key(db, tenant.id, [ApiScope.READ])


@pytest_asyncio.fixture
async def client(session_factory):
    from app.db.session import get_db
    from app.dependencies import get_rate_limiter
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    limiter = DatabaseRateLimiter(session_factory)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rate_limiter] = lambda: limiter

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth(raw_key: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {raw_key}"}
