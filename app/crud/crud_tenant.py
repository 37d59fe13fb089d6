from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.tenant import Tenant


async def get_tenant(db: AsyncSession, *, tenant_id: uuid.UUID) -> Optional[Tenant]:
    result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()


async def get_tenant_by_slug(db: AsyncSession, *, slug: str) -> Optional[Tenant]:
    result = await db.execute(select(Tenant).where(Tenant.slug == slug))
    return result.scalar_one_or_none()


async def get_webhook_url(db: AsyncSession, *, tenant_id: uuid.UUID) -> Optional[str]:
    result = await db.execute(select(Tenant.webhook_url).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()
