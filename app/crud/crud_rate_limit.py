from datetime import datetime
import uuid

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.crud.base import dialect_insert
from app.db.base_class import utcnow
from app.models.rate_limit import RateLimitCounter


async def increment(
    db: AsyncSession, *, tenant_id: uuid.UUID, key: str, window_start: datetime, amount: int = 1
) -> int:
    """Atomically bumps the counter for the window and returns the new count."""
    now = utcnow()
    insert_stmt = dialect_insert(db, RateLimitCounter).values(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        key=key,
        window_start=window_start,
        count=amount,
        updated_at=now,
    )
    statement = insert_stmt.on_conflict_do_update(
        index_elements=["tenant_id", "key", "window_start"],
        set_={
            "count": RateLimitCounter.count + amount,
            "updated_at": now,
        },
    ).returning(RateLimitCounter.count)
    result = await db.execute(statement)
    return int(result.scalar_one())


async def delete_older_than(db: AsyncSession, *, cutoff: datetime) -> int:
    result = await db.execute(delete(RateLimitCounter).where(RateLimitCounter.window_start < cutoff))
    return result.rowcount or 0
