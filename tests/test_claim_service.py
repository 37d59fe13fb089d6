import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app import crud
from app.core.config import settings
from app.core.exceptions import (
    ClaimConflictError,
    InvalidRequestError,
    RateLimitedError,
    ReferralCapReachedError,
    ReferralCodeNotFoundError,
    SelfReferralError,
)
from app.models import DomainEvent, Referral, RewardLedgerEntry, User, WebhookDelivery
from app.models.enums import EventType, SubscriptionTier, WebhookDeliveryStatus
from app.services import claim_service, ledger_service
from tests.conftest import StubRateLimiter


async def _claim(db, tenant, limiter, code="REF123", referred="u2", ip="10.0.0.1"):
    return await claim_service.claim_referral(
        db,
        tenant_id=tenant.id,
        referral_code=code,
        referred_user_id=referred,
        client_ip=ip,
        rate_limiter=limiter,
    )


async def _count(db, model):
    return (await db.execute(select(func.count()).select_from(model))).scalar()


async def test_first_claim_grants_tier_reward(db, tenant, referrer, rate_limiter):
    result = await _claim(db, tenant, rate_limiter)

    assert result.already_processed is False
    assert result.referral.referrer_external_user_id == "u1"
    assert result.referrer_reward.amount == Decimal("200")
    assert result.referrer_reward.currency == "AUD"
    assert result.referred_reward is None

    response = result.to_response()
    assert response.rewards.referrerReward.amount == 200.0
    assert response.referral.referrerUserId == "u1"
    assert response.referral.status == "completed"

    referred = await crud.crud_user.get_by_external_id(db, tenant_id=tenant.id, external_user_id="u2")
    assert referred.plan == SubscriptionTier.FREE.value
    assert referred.referral_code.startswith("ref_")
    assert len(referred.referral_code) == 16


async def test_replay_returns_same_referral_without_rewards(db, tenant, referrer, rate_limiter):
    first = await _claim(db, tenant, rate_limiter)
    second = await _claim(db, tenant, rate_limiter)

    assert second.already_processed is True
    assert second.referral.id == first.referral.id
    assert second.referrer_reward is None and second.referred_reward is None
    body = second.to_response()
    assert body.rewards.referrerReward is None
    assert body.alreadyProcessed is True
    assert await _count(db, Referral) == 1
    assert await _count(db, RewardLedgerEntry) == 1


async def test_claim_writes_event_and_enqueues_webhook(db, tenant, referrer, rate_limiter):
    result = await _claim(db, tenant, rate_limiter)

    event = (await db.execute(select(DomainEvent).where(DomainEvent.id == result.event_id))).scalar_one()
    assert event.type == EventType.REFERRAL_CLAIMED.value
    assert event.payload["referralId"] == str(result.referral.id)
    assert event.payload["referrerUserId"] == "u1"
    assert event.payload["rewards"]["referrer"]["amount"] == 200.0

    delivery = (await db.execute(select(WebhookDelivery))).scalar_one()
    assert delivery.event_id == event.id
    assert delivery.status == WebhookDeliveryStatus.PENDING.value
    assert delivery.attempt_count == 0


async def test_claim_without_webhook_url_still_succeeds(db, tenant, referrer, rate_limiter):
    tenant.webhook_url = None
    await db.commit()

    result = await _claim(db, tenant, rate_limiter)
    assert not result.already_processed
    assert await _count(db, WebhookDelivery) == 0


async def test_enqueue_failure_does_not_undo_claim(db, tenant, referrer, rate_limiter, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("queue down")

    monkeypatch.setattr(claim_service.webhook_service, "enqueue_for_event", broken)
    result = await _claim(db, tenant, rate_limiter)

    assert not result.already_processed
    assert await _count(db, Referral) == 1


async def test_onboarding_bonus_goes_to_referred_user(db, tenant, referrer, rate_limiter):
    tenant.referral_settings = {"onboarding_bonus": 25, "currency": "USD"}
    await db.commit()

    result = await _claim(db, tenant, rate_limiter)
    assert result.referred_reward.amount == Decimal("25")
    referred = await crud.crud_user.get_by_external_id(db, tenant_id=tenant.id, external_user_id="u2")
    total = await ledger_service.sum_by_user(db, tenant_id=tenant.id, user_id=referred.id)
    assert total.total == Decimal("25")
    assert total.currency == "USD"


async def test_unknown_code_creates_nothing(db, tenant, referrer, rate_limiter):
    with pytest.raises(ReferralCodeNotFoundError):
        await _claim(db, tenant, rate_limiter, code="NOPE")

    assert await _count(db, Referral) == 0
    assert await _count(db, User) == 1
    assert rate_limiter.calls[-1] == "invalid_ref:ip:10.0.0.1"


async def test_repeated_unknown_codes_stay_not_found(db, tenant, referrer):
    limiter = StubRateLimiter(denied_prefixes=("invalid_ref:",))
    with pytest.raises(ReferralCodeNotFoundError):
        await _claim(db, tenant, limiter, code="NOPE")


async def test_self_referral_rejected(db, tenant, referrer, rate_limiter):
    with pytest.raises(SelfReferralError):
        await _claim(db, tenant, rate_limiter, referred="u1")
    assert await _count(db, Referral) == 0


async def test_referral_cap(db, tenant, referrer, rate_limiter):
    tenant.referral_settings = {"max_referrals_per_referrer": 1}
    await db.commit()

    await _claim(db, tenant, rate_limiter, referred="u2")
    with pytest.raises(ReferralCapReachedError) as exc_info:
        await _claim(db, tenant, rate_limiter, referred="u3")
    assert exc_info.value.details == {"limit": 1, "current": 1}


@pytest.mark.parametrize(
    "code, referred",
    [("", "u2"), ("   ", "u2"), ("REF123", ""), ("x" * 51, "u2"), ("REF123", "u" * 256)],
)
async def test_input_validation(db, tenant, referrer, rate_limiter, code, referred):
    with pytest.raises(InvalidRequestError):
        await _claim(db, tenant, rate_limiter, code=code, referred=referred)
    assert rate_limiter.calls == []


async def test_rate_limits_checked_per_ip_and_user(db, tenant, referrer):
    limiter = StubRateLimiter(denied_prefixes=("claim:user:",), retry_after_seconds=17)
    with pytest.raises(RateLimitedError) as exc_info:
        await _claim(db, tenant, limiter)

    assert exc_info.value.retry_after_seconds == 17
    assert exc_info.value.details["retryAfterSeconds"] == 17
    assert limiter.calls == ["claim:ip:10.0.0.1", "claim:user:u2"]
    assert await _count(db, Referral) == 0


async def test_in_transaction_recheck_catches_concurrent_winner(db, tenant, referrer, rate_limiter, monkeypatch):
    first = await _claim(db, tenant, rate_limiter)

    real_lookup = crud.crud_referral.get_by_referred_external_id
    calls = {"n": 0}

    async def stale_fast_path(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return await real_lookup(*args, **kwargs)

    monkeypatch.setattr(crud.crud_referral, "get_by_referred_external_id", stale_fast_path)
    second = await _claim(db, tenant, rate_limiter)

    assert second.already_processed
    assert second.referral.id == first.referral.id
    assert await _count(db, RewardLedgerEntry) == 1


async def test_unique_constraint_resolves_to_already_processed(db, tenant, referrer, rate_limiter, monkeypatch):
    first = await _claim(db, tenant, rate_limiter)

    real_lookup = crud.crud_referral.get_by_referred_external_id
    calls = {"n": 0}

    async def both_checks_miss(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] <= 2:
            return None
        return await real_lookup(*args, **kwargs)

    monkeypatch.setattr(crud.crud_referral, "get_by_referred_external_id", both_checks_miss)
    second = await _claim(db, tenant, rate_limiter)

    assert second.already_processed
    assert second.referral.id == first.referral.id
    assert await _count(db, Referral) == 1
    assert await _count(db, RewardLedgerEntry) == 1
    assert await _count(db, DomainEvent) == 1


class _SerializationFailure(Exception):
    sqlstate = "40001"


async def test_serialization_failure_is_retried_once(db, tenant, referrer, rate_limiter, monkeypatch):
    real_tx = claim_service._claim_in_transaction
    calls = {"n": 0}

    async def flaky(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("INSERT", {}, _SerializationFailure())
        return await real_tx(*args, **kwargs)

    monkeypatch.setattr(claim_service, "_claim_in_transaction", flaky)
    result = await _claim(db, tenant, rate_limiter)

    assert calls["n"] == 2
    assert not result.already_processed


async def test_persistent_serialization_failure_is_claim_conflict(db, tenant, referrer, rate_limiter, monkeypatch):
    async def always_conflicts(*args, **kwargs):
        raise OperationalError("INSERT", {}, _SerializationFailure())

    monkeypatch.setattr(claim_service, "_claim_in_transaction", always_conflicts)
    with pytest.raises(ClaimConflictError):
        await _claim(db, tenant, rate_limiter)
    assert settings.CLAIM_SERIALIZATION_RETRIES == 1


async def test_other_database_errors_propagate(db, tenant, referrer, rate_limiter, monkeypatch):
    async def disk_full(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(claim_service, "_claim_in_transaction", disk_full)
    with pytest.raises(OperationalError):
        await _claim(db, tenant, rate_limiter)


async def test_ledger_sum_matches_first_time_amounts(db, tenant, referrer, rate_limiter):
    granted = Decimal("0")
    for referred in ("u2", "u3", "u4"):
        result = await _claim(db, tenant, rate_limiter, referred=referred)
        granted += result.referrer_reward.amount
        await _claim(db, tenant, rate_limiter, referred=referred)

    total = await ledger_service.sum_by_user(db, tenant_id=tenant.id, user_id=referrer.id)
    assert total.total == granted == Decimal("600")


async def test_parallel_claims_on_shared_database(session_factory, tenant, referrer):
    limiter = StubRateLimiter()

    async def claim():
        async with session_factory() as db:
            return await _claim(db, tenant, limiter)

    results = await asyncio.gather(*(claim() for _ in range(5)))

    assert len([r for r in results if not r.already_processed]) == 1
    assert len({r.referral.id for r in results}) == 1
    for result in results:
        if result.already_processed:
            assert result.referrer_reward is None

    async with session_factory() as db:
        assert await _count(db, Referral) == 1
        assert await _count(db, RewardLedgerEntry) == 1
