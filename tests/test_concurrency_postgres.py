"""
Concurrent claims against a real PostgreSQL server.

SQLite serializes writers (see test_parallel_claims_on_shared_database); this
exercises row locks and serialization failures instead. Set
TEST_POSTGRES_URL (postgresql+asyncpg://...) to a disposable database to run.
"""
import asyncio
import os

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.db.base_class import Base
from app.models import Referral, RewardLedgerEntry, Tenant, User
from app.models.enums import SubscriptionTier
from app.services import claim_service
from tests.conftest import StubRateLimiter

POSTGRES_URL = os.getenv("TEST_POSTGRES_URL")

pytestmark = pytest.mark.skipif(not POSTGRES_URL, reason="TEST_POSTGRES_URL is not set")

CONCURRENT_CLAIMS = 10


@pytest_asyncio.fixture
async def pg_session_factory():
    engine = create_async_engine(POSTGRES_URL, pool_size=CONCURRENT_CLAIMS)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


async def test_parallel_claims_create_one_referral(pg_session_factory):
    async with pg_session_factory() as db:
        tenant = Tenant(slug="race", name="Race")
        db.add(tenant)
        await db.flush()
        db.add(User(tenant_id=tenant.id, external_user_id="u1", plan=SubscriptionTier.PRO.value, referral_code="REF123"))
        await db.commit()
        tenant_id = tenant.id

    limiter = StubRateLimiter()

    async def claim():
        async with pg_session_factory() as db:
            return await claim_service.claim_referral(
                db,
                tenant_id=tenant_id,
                referral_code="REF123",
                referred_user_id="u2",
                client_ip="10.0.0.1",
                rate_limiter=limiter,
            )

    results = await asyncio.gather(*(claim() for _ in range(CONCURRENT_CLAIMS)), return_exceptions=True)

    # Conflicts that outlive the retry are allowed; duplicates are not
    successes = [r for r in results if isinstance(r, claim_service.ClaimResult)]
    for r in results:
        if not isinstance(r, claim_service.ClaimResult):
            assert getattr(r, "code", None) == "CLAIM_CONFLICT", r
    assert len([r for r in successes if not r.already_processed]) == 1
    assert len({r.referral.id for r in successes}) == 1

    async with pg_session_factory() as db:
        referrals = (await db.execute(select(func.count()).select_from(Referral))).scalar()
        entries = (await db.execute(select(func.count()).select_from(RewardLedgerEntry))).scalar()
    assert referrals == 1
    assert entries == 1
