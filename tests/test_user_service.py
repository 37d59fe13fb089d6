import pytest

from app import crud
from app.core.exceptions import RateLimitedError, ReferralServiceError
from app.services import user_service
from tests.conftest import StubRateLimiter


async def test_upsert_creates_user_with_code_and_link(db, tenant, rate_limiter):
    result = await user_service.upsert_user(
        db, tenant_id=tenant.id, external_user_id="new-user", email="new@example.com",
        subscription_tier="pro", rate_limiter=rate_limiter,
    )

    assert result.created is True
    assert result.user.plan == "pro"
    assert result.user.referral_code.startswith("ref_")
    assert result.referral_link == f"http://localhost:3000?ref__={result.user.referral_code}"
    assert rate_limiter.calls == [f"upsert:tenant:{tenant.id}"]


async def test_upsert_updates_existing_user_and_keeps_code(db, tenant, referrer):
    result = await user_service.upsert_user(
        db, tenant_id=tenant.id, external_user_id="u1", subscription_tier="power_pro"
    )

    assert result.created is False
    assert result.user.id == referrer.id
    assert result.user.referral_code == "REF123"
    assert result.user.plan == "power_pro"


async def test_unknown_tier_falls_back_to_free(db, tenant):
    result = await user_service.upsert_user(
        db, tenant_id=tenant.id, external_user_id="u9", subscription_tier="enterprise"
    )
    assert result.user.plan == "free"


async def test_tenant_share_base_url(db, tenant):
    tenant.referral_settings = {"share_base_url": "https://acme.example.com/join?src=app"}
    await db.commit()

    result = await user_service.upsert_user(db, tenant_id=tenant.id, external_user_id="u2")

    assert result.referral_link.startswith("https://acme.example.com/join?")
    assert "src=app" in result.referral_link
    assert f"ref__={result.user.referral_code}" in result.referral_link


async def test_upsert_rate_limited(db, tenant):
    limiter = StubRateLimiter(denied_prefixes=("upsert:",), retry_after_seconds=7)

    with pytest.raises(RateLimitedError) as exc_info:
        await user_service.upsert_user(db, tenant_id=tenant.id, external_user_id="u2", rate_limiter=limiter)

    assert exc_info.value.retry_after_seconds == 7
    assert await crud.crud_user.get_by_external_id(db, tenant_id=tenant.id, external_user_id="u2") is None


async def test_code_collision_is_regenerated(db, tenant, referrer, monkeypatch):
    codes = iter(["REF123", "ref_fresh"])
    monkeypatch.setattr(user_service, "generate_referral_code", lambda: next(codes))

    user, created = await user_service.get_or_create_user(
        db, tenant_id=tenant.id, external_user_id="u2", plan="free"
    )

    assert created is True
    assert user.referral_code == "ref_fresh"


async def test_gives_up_after_repeated_collisions(db, tenant, referrer, monkeypatch):
    monkeypatch.setattr(user_service, "generate_referral_code", lambda: "REF123")

    with pytest.raises(ReferralServiceError):
        await user_service.get_or_create_user(db, tenant_id=tenant.id, external_user_id="u2", plan="free")


async def test_get_or_create_returns_existing(db, tenant, referrer):
    user, created = await user_service.get_or_create_user(
        db, tenant_id=tenant.id, external_user_id="u1", plan="free"
    )
    assert created is False
    assert user.id == referrer.id
    # Existing plan is not overwritten by a claim
    assert user.plan == "pro"
