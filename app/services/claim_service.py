"""
Referral claim processing.

A claim turns (referral code, referred user id) into at most one referral per
referred user per tenant, plus the reward ledger entries and the
``referral.claimed`` event for it. Cheap checks run first outside any
transaction; the writes run in a single SERIALIZABLE transaction that
re-checks for an existing referral before inserting.

Correctness under concurrency rests on the database, not on the early read:

* ``uq_referrals_tenant_referred_external`` rejects a second referral. The
  losing request sees an IntegrityError and answers as already processed.
* ``uq_rewards_ledger_tenant_key_user`` makes every grant insert-if-absent.
* A serialization failure is retried, then surfaced as ``CLAIM_CONFLICT``.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, Mapping, Optional
import uuid

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud, schemas
from app.core.config import settings
from app.core.exceptions import (
    ClaimConflictError,
    InvalidRequestError,
    RateLimitedError,
    ReferralCapReachedError,
    ReferralCodeNotFoundError,
    SelfReferralError,
    TenantNotFoundError,
)
from app.models.enums import EventType, RewardSource, SubscriptionTier
from app.models.referral import Referral
from app.services import ledger_service, reward_rules, user_service, webhook_service
from app.services.ledger_service import RewardCategory, reward_idempotency_key
from app.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

SERIALIZATION_FAILURE_CODES = ("40001", "40P01")


@dataclass(frozen=True)
class RewardGrant:
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class ClaimedReferral:
    id: uuid.UUID
    referrer_external_user_id: str
    referred_external_user_id: str
    ref_code_used: str
    status: str
    created_at: datetime

    @classmethod
    def from_model(cls, referral: Referral, referrer_external_user_id: str) -> "ClaimedReferral":
        # Detached copy: a failed post-commit step may roll back and expire the ORM row
        return cls(
            id=referral.id,
            referrer_external_user_id=referrer_external_user_id,
            referred_external_user_id=referral.referred_external_user_id,
            ref_code_used=referral.ref_code_used,
            status=referral.status,
            created_at=referral.created_at,
        )


@dataclass
class ClaimResult:
    referral: ClaimedReferral
    already_processed: bool
    referrer_reward: Optional[RewardGrant] = None
    referred_reward: Optional[RewardGrant] = None
    event_id: Optional[uuid.UUID] = None

    def to_response(self) -> schemas.ClaimResponse:
        def reward_out(grant: Optional[RewardGrant]) -> Optional[schemas.RewardAmount]:
            if grant is None:
                return None
            return schemas.RewardAmount(amount=float(grant.amount), currency=grant.currency)

        return schemas.ClaimResponse(
            referral=schemas.ReferralOut(
                id=self.referral.id,
                referrerUserId=self.referral.referrer_external_user_id,
                referredExternalUserId=self.referral.referred_external_user_id,
                refCodeUsed=self.referral.ref_code_used,
                status=self.referral.status,
                createdAt=self.referral.created_at,
            ),
            rewards=schemas.ClaimRewards(
                referrerReward=reward_out(self.referrer_reward),
                referredReward=reward_out(self.referred_reward),
            ),
            alreadyProcessed=self.already_processed,
        )


@dataclass(frozen=True)
class _Referrer:
    # Plain values: ORM instances are expired by a rollback between retries
    id: uuid.UUID
    external_user_id: str
    plan: str


def is_serialization_failure(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code in SERIALIZATION_FAILURE_CODES:
            return True
    return False


def _validate_input(referral_code: Any, referred_user_id: Any) -> None:
    if not isinstance(referral_code, str) or not referral_code.strip():
        raise InvalidRequestError("referralCode is required")
    if not isinstance(referred_user_id, str) or not referred_user_id.strip():
        raise InvalidRequestError("referredUserId is required")
    if len(referral_code) > settings.MAX_REFERRAL_CODE_LENGTH:
        raise InvalidRequestError(f"referralCode exceeds maximum length of {settings.MAX_REFERRAL_CODE_LENGTH}")
    if len(referred_user_id) > settings.MAX_EXTERNAL_USER_ID_LENGTH:
        raise InvalidRequestError(
            f"referredUserId exceeds maximum length of {settings.MAX_EXTERNAL_USER_ID_LENGTH}"
        )


def _referral_cap(referral_settings: Optional[Mapping[str, Any]]) -> Optional[int]:
    if not isinstance(referral_settings, Mapping):
        return None
    cap = referral_settings.get("max_referrals_per_referrer")
    if isinstance(cap, bool) or not isinstance(cap, int) or cap <= 0:
        return None
    return cap


async def _enforce_rate_limit(
    rate_limiter: RateLimiter, tenant_id: uuid.UUID, key: str, limit: int, message: str
) -> None:
    result = await rate_limiter.check_and_increment(tenant_id, key, limit)
    if not result.allowed:
        logger.warning(f"Rate limit exceeded for '{key}' (tenant {tenant_id}): {result.count}/{limit}")
        raise RateLimitedError(
            f"{message} Please retry after {result.retry_after_seconds} seconds.",
            retry_after_seconds=result.retry_after_seconds,
            details={"limit": limit},
        )


async def _already_processed(db: AsyncSession, *, tenant_id: uuid.UUID, referral: Referral) -> ClaimResult:
    referrer = await crud.crud_user.get_by_id(db, tenant_id=tenant_id, user_id=referral.referrer_user_id)
    referrer_external_user_id = referrer.external_user_id if referrer else str(referral.referrer_user_id)
    return ClaimResult(
        referral=ClaimedReferral.from_model(referral, referrer_external_user_id),
        already_processed=True,
    )


async def claim_referral(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    referral_code: str,
    referred_user_id: str,
    client_ip: str,
    rate_limiter: RateLimiter,
) -> ClaimResult:
    _validate_input(referral_code, referred_user_id)

    await _enforce_rate_limit(
        rate_limiter, tenant_id, f"claim:ip:{client_ip}", settings.CLAIM_RATE_LIMIT_PER_IP, "Too many requests."
    )
    await _enforce_rate_limit(
        rate_limiter,
        tenant_id,
        f"claim:user:{referred_user_id}",
        settings.CLAIM_RATE_LIMIT_PER_USER,
        "Too many requests for this user.",
    )

    # Fast path for replays. The in-transaction re-check below is the real guard.
    existing = await crud.crud_referral.get_by_referred_external_id(
        db, tenant_id=tenant_id, referred_external_user_id=referred_user_id
    )
    if existing:
        result = await _already_processed(db, tenant_id=tenant_id, referral=existing)
        await db.commit()
        logger.info(f"Claim replay for '{referred_user_id}' returned referral {existing.id}")
        return result

    referrer_row = await crud.crud_user.get_by_referral_code(db, tenant_id=tenant_id, referral_code=referral_code)
    if not referrer_row:
        await db.commit()
        invalid = await rate_limiter.check_and_increment(
            tenant_id, f"invalid_ref:ip:{client_ip}", settings.INVALID_REFERRAL_CODE_LIMIT_PER_IP
        )
        if not invalid.allowed:
            logger.warning(
                f"Suspected referral code enumeration from {client_ip} (tenant {tenant_id}): "
                f"{invalid.count} unknown codes this window"
            )
        raise ReferralCodeNotFoundError()

    if referrer_row.external_user_id == referred_user_id:
        raise SelfReferralError()

    tenant = await crud.crud_tenant.get_tenant(db, tenant_id=tenant_id)
    if not tenant:
        raise TenantNotFoundError()
    referral_settings: Dict[str, Any] = dict(tenant.referral_settings or {})

    cap = _referral_cap(referral_settings)
    if cap is not None:
        current = await crud.crud_referral.count_by_referrer(
            db, tenant_id=tenant_id, referrer_user_id=referrer_row.id
        )
        if current >= cap:
            raise ReferralCapReachedError(details={"limit": cap, "current": current})

    referrer = _Referrer(id=referrer_row.id, external_user_id=referrer_row.external_user_id, plan=referrer_row.plan)
    # The isolation level can only be chosen at the start of a transaction
    await db.commit()

    attempts = max(0, settings.CLAIM_SERIALIZATION_RETRIES) + 1
    for attempt in range(1, attempts + 1):
        try:
            result = await _claim_in_transaction(
                db,
                tenant_id=tenant_id,
                referral_settings=referral_settings,
                referrer=referrer,
                referral_code=referral_code,
                referred_user_id=referred_user_id,
            )
            break
        except IntegrityError:
            await db.rollback()
            winner = await crud.crud_referral.get_by_referred_external_id(
                db, tenant_id=tenant_id, referred_external_user_id=referred_user_id
            )
            if not winner:
                raise
            logger.info(f"Concurrent claim for '{referred_user_id}' lost to referral {winner.id}")
            result = await _already_processed(db, tenant_id=tenant_id, referral=winner)
            await db.commit()
            return result
        except DBAPIError as e:
            await db.rollback()
            if not is_serialization_failure(e):
                raise
            if attempt < attempts:
                logger.warning(f"Serialization failure claiming for '{referred_user_id}' (attempt {attempt}); retrying")
                continue
            logger.warning(f"Serialization failure claiming for '{referred_user_id}' persisted after {attempt} attempts")
            raise ClaimConflictError() from e

    if result.event_id is not None:
        await webhook_service.enqueue_after_commit(db, tenant_id=tenant_id, event_id=result.event_id)
    return result


async def _claim_in_transaction(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    referral_settings: Dict[str, Any],
    referrer: _Referrer,
    referral_code: str,
    referred_user_id: str,
) -> ClaimResult:
    await db.connection(execution_options={"isolation_level": settings.CLAIM_ISOLATION_LEVEL})

    existing = await crud.crud_referral.get_by_referred_external_id(
        db, tenant_id=tenant_id, referred_external_user_id=referred_user_id
    )
    if existing:
        result = await _already_processed(db, tenant_id=tenant_id, referral=existing)
        await db.commit()
        logger.info(f"Referral for '{referred_user_id}' appeared before the insert; returning {existing.id}")
        return result

    referred_user, _ = await user_service.get_or_create_user(
        db, tenant_id=tenant_id, external_user_id=referred_user_id, plan=SubscriptionTier.FREE.value
    )
    referral = await crud.crud_referral.create_completed(
        db,
        tenant_id=tenant_id,
        referrer_user_id=referrer.id,
        referred_user_id=referred_user.id,
        referred_external_user_id=referred_user_id,
        ref_code_used=referral_code,
    )

    decision = reward_rules.evaluate(referral_settings, referrer.plan)
    referrer_reward: Optional[RewardGrant] = None
    referred_reward: Optional[RewardGrant] = None
    referrer_json: Optional[Dict[str, Any]] = None
    referred_json: Optional[Dict[str, Any]] = None

    if decision.grants_referrer:
        referrer_json = {
            "type": "credit",
            "amount": float(decision.referrer_amount),
            "currency": decision.currency,
            "description": f"Referral reward for referring {referred_user_id}",
            "referralId": str(referral.id),
            "referrerTier": decision.referrer_tier.value,
            "referredExternalUserId": referred_user_id,
        }
        await ledger_service.insert_if_absent(
            db,
            tenant_id=tenant_id,
            user_id=referrer.id,
            idempotency_key=reward_idempotency_key(referral.id, referrer.id, RewardCategory.REFERRAL_REWARD),
            reward_json=referrer_json,
            source=RewardSource.REFERRAL_REWARD,
        )
        referrer_reward = RewardGrant(decision.referrer_amount, decision.currency)

    if decision.grants_referred:
        referred_json = {
            "type": "credit",
            "amount": float(decision.referred_amount),
            "currency": decision.currency,
            "description": "Welcome bonus for signing up via referral",
            "referralId": str(referral.id),
            "referrerExternalUserId": referrer.external_user_id,
        }
        await ledger_service.insert_if_absent(
            db,
            tenant_id=tenant_id,
            user_id=referred_user.id,
            idempotency_key=reward_idempotency_key(referral.id, referred_user.id, RewardCategory.ONBOARDING_BONUS),
            reward_json=referred_json,
            source=RewardSource.ONBOARDING_BONUS,
        )
        referred_reward = RewardGrant(decision.referred_amount, decision.currency)

    event = await crud.event.append(
        db,
        tenant_id=tenant_id,
        type=EventType.REFERRAL_CLAIMED,
        payload={
            "referralId": str(referral.id),
            "referrerUserId": referrer.external_user_id,
            "referredUserId": referred_user_id,
            "referralCode": referral_code,
            "rewards": {"referrer": referrer_json, "referred": referred_json},
        },
    )
    await db.commit()
    logger.info(
        f"Referral {referral.id} claimed: '{referred_user_id}' via code {referral_code} "
        f"(referrer reward {decision.referrer_amount} {decision.currency})"
    )
    return ClaimResult(
        referral=ClaimedReferral.from_model(referral, referrer.external_user_id),
        already_processed=False,
        referrer_reward=referrer_reward,
        referred_reward=referred_reward,
        event_id=event.id,
    )
