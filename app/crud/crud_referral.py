from typing import Optional
import uuid

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.base_class import utcnow
from app.models.enums import ReferralStatus
from app.models.referral import Referral


async def get_by_referred_external_id(
    db: AsyncSession, *, tenant_id: uuid.UUID, referred_external_user_id: str
) -> Optional[Referral]:
    statement = select(Referral).where(
        Referral.tenant_id == tenant_id,
        Referral.referred_external_user_id == referred_external_user_id,
    )
    result = await db.execute(statement)
    return result.scalar_one_or_none()


async def count_by_referrer(db: AsyncSession, *, tenant_id: uuid.UUID, referrer_user_id: uuid.UUID) -> int:
    statement = select(func.count(Referral.id)).where(
        Referral.tenant_id == tenant_id,
        Referral.referrer_user_id == referrer_user_id,
    )
    result = await db.execute(statement)
    return int(result.scalar() or 0)


async def create_completed(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    referrer_user_id: uuid.UUID,
    referred_user_id: uuid.UUID,
    referred_external_user_id: str,
    ref_code_used: str,
) -> Referral:
    """Adds and flushes a referral; a duplicate surfaces as IntegrityError from the flush."""
    now = utcnow()
    referral = Referral(
        tenant_id=tenant_id,
        referrer_user_id=referrer_user_id,
        referred_user_id=referred_user_id,
        referred_external_user_id=referred_external_user_id,
        ref_code_used=ref_code_used,
        status=ReferralStatus.COMPLETED.value,
        created_at=now,
        completed_at=now,
    )
    db.add(referral)
    await db.flush()
    return referral
