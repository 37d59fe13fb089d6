from typing import Optional
import uuid

from sqlalchemy import select, exists
from sqlalchemy.ext.asyncio import AsyncSession

from app.crud.base import dialect_insert
from app.models.user import User


async def get_by_external_id(db: AsyncSession, *, tenant_id: uuid.UUID, external_user_id: str) -> Optional[User]:
    statement = select(User).where(User.tenant_id == tenant_id, User.external_user_id == external_user_id)
    result = await db.execute(statement)
    return result.scalar_one_or_none()


async def get_by_referral_code(db: AsyncSession, *, tenant_id: uuid.UUID, referral_code: str) -> Optional[User]:
    statement = select(User).where(User.tenant_id == tenant_id, User.referral_code == referral_code)
    result = await db.execute(statement)
    return result.scalar_one_or_none()


async def get_by_id(db: AsyncSession, *, tenant_id: uuid.UUID, user_id: uuid.UUID) -> Optional[User]:
    statement = select(User).where(User.tenant_id == tenant_id, User.id == user_id)
    result = await db.execute(statement)
    return result.scalar_one_or_none()


async def referral_code_exists(db: AsyncSession, *, tenant_id: uuid.UUID, referral_code: str) -> bool:
    statement = select(exists().where(User.tenant_id == tenant_id, User.referral_code == referral_code))
    result = await db.execute(statement)
    return bool(result.scalar())


async def insert_if_absent(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    external_user_id: str,
    referral_code: str,
    plan: str,
    email: Optional[str] = None,
) -> Optional[User]:
    """
    Inserts a user unless one of the unique constraints already holds a row.

    Returns the new row, or None when the insert hit a conflict (on the
    external id or on the referral code). The caller decides which.
    """
    statement = (
        dialect_insert(db, User)
        .values(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            external_user_id=external_user_id,
            referral_code=referral_code,
            plan=plan,
            email=email,
        )
        .on_conflict_do_nothing()
        .returning(User.id)
    )
    result = await db.execute(statement)
    new_id = result.scalar_one_or_none()
    if new_id is None:
        return None
    return await get_by_id(db, tenant_id=tenant_id, user_id=new_id)
