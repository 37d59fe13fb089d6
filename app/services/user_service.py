from dataclasses import dataclass
import logging
from typing import Optional, Tuple
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.config import settings
from app.core.exceptions import RateLimitedError, ReferralServiceError
from app.models.tenant import Tenant
from app.models.user import User
from app.services.rate_limiter import RateLimiter
from app.services.reward_rules import normalize_subscription_tier
from app.utils.referral_code import build_referral_link, generate_referral_code

logger = logging.getLogger(__name__)

MAX_CODE_GENERATION_ATTEMPTS = 5


@dataclass
class UpsertResult:
    user: User
    referral_link: str
    created: bool


def share_base_url(tenant: Optional[Tenant]) -> str:
    if tenant is not None and isinstance(tenant.referral_settings, dict):
        base_url = tenant.referral_settings.get("share_base_url")
        if isinstance(base_url, str) and base_url.strip():
            return base_url.strip()
    return settings.SHARE_BASE_URL


async def get_or_create_user(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    external_user_id: str,
    plan: str,
    email: Optional[str] = None,
) -> Tuple[User, bool]:
    """
    Returns ``(user, created)``. Safe under concurrent calls for the same
    external id: the insert does nothing on conflict and the winner's row is
    read back. Does not commit.
    """
    for attempt in range(1, MAX_CODE_GENERATION_ATTEMPTS + 1):
        existing = await crud.crud_user.get_by_external_id(db, tenant_id=tenant_id, external_user_id=external_user_id)
        if existing:
            return existing, False

        code = generate_referral_code()
        if await crud.crud_user.referral_code_exists(db, tenant_id=tenant_id, referral_code=code):
            logger.debug(f"Generated referral code collided (attempt {attempt}); regenerating")
            continue

        user = await crud.crud_user.insert_if_absent(
            db, tenant_id=tenant_id, external_user_id=external_user_id, referral_code=code, plan=plan, email=email
        )
        if user is not None:
            logger.info(f"Created user '{external_user_id}' with referral code {code} (tenant {tenant_id})")
            return user, True
        # Conflict: either a concurrent insert of the same user (picked up at
        # the top of the loop) or a code collision (retried with a new code)

    raise ReferralServiceError(
        f"Failed to create user '{external_user_id}': no unique referral code after {MAX_CODE_GENERATION_ATTEMPTS} attempts"
    )


async def upsert_user(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    external_user_id: str,
    email: Optional[str] = None,
    subscription_tier: Optional[str] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> UpsertResult:
    if rate_limiter is not None:
        limit = await rate_limiter.check_and_increment(
            tenant_id, f"upsert:tenant:{tenant_id}", settings.UPSERT_RATE_LIMIT_PER_TENANT
        )
        if not limit.allowed:
            raise RateLimitedError(
                f"Too many requests. Please retry after {limit.retry_after_seconds} seconds.",
                retry_after_seconds=limit.retry_after_seconds,
                details={"limit": limit.limit},
            )

    plan = normalize_subscription_tier(subscription_tier).value
    user, created = await get_or_create_user(
        db, tenant_id=tenant_id, external_user_id=external_user_id, plan=plan, email=email
    )
    if not created:
        user.plan = plan
        if email is not None:
            user.email = email
        await db.flush()
    await db.commit()

    tenant = await crud.crud_tenant.get_tenant(db, tenant_id=tenant_id)
    link = build_referral_link(share_base_url(tenant), user.referral_code)
    return UpsertResult(user=user, referral_link=link, created=created)
