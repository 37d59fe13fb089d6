from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.api_key import ApiKey


async def get_active_by_hash(db: AsyncSession, *, key_hash: str) -> Optional[ApiKey]:
    statement = select(ApiKey).where(ApiKey.key_hash == key_hash, ApiKey.revoked_at.is_(None))
    result = await db.execute(statement)
    return result.scalar_one_or_none()
