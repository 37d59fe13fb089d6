"""
Fixed-window rate limiting behind an injectable interface.

The claim path depends only on :class:`RateLimiter`. The default
implementation keeps one counter row per (tenant, key, window) in the
``rate_limits`` table and commits each increment in its own short session, so
counters survive even when the request that bumped them later fails.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import math
from typing import Callable, Optional, Protocol
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    count: int
    retry_after_seconds: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class RateLimiter(Protocol):
    async def check_and_increment(
        self, tenant_id: uuid.UUID, key: str, limit: int, window_seconds: Optional[int] = None
    ) -> RateLimitResult:
        ...


def window_start_for(now: datetime, window_seconds: int) -> datetime:
    epoch = now.timestamp()
    start = epoch - (epoch % window_seconds)
    return datetime.fromtimestamp(start, tz=timezone.utc)


class DatabaseRateLimiter:
    def __init__(self, session_factory: Callable[[], AsyncSession], *, clock: Optional[Callable[[], datetime]] = None):
        self.session_factory = session_factory
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def check_and_increment(
        self, tenant_id: uuid.UUID, key: str, limit: int, window_seconds: Optional[int] = None
    ) -> RateLimitResult:
        window_seconds = window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS
        now = self.clock()
        window_start = window_start_for(now, window_seconds)
        window_end = window_start + timedelta(seconds=window_seconds)

        try:
            async with self.session_factory() as db:
                count = await crud.crud_rate_limit.increment(
                    db, tenant_id=tenant_id, key=key, window_start=window_start
                )
                await db.commit()
        except SQLAlchemyError as e:
            # Fail open: a broken counter table must not take the claim path down with it
            logger.error(f"Rate limit check failed for key '{key}' (tenant {tenant_id}), allowing request: {e}")
            return RateLimitResult(allowed=True, limit=limit, count=0, retry_after_seconds=0)

        allowed = count <= limit
        retry_after = 0 if allowed else max(1, math.ceil((window_end - now).total_seconds()))
        return RateLimitResult(allowed=allowed, limit=limit, count=count, retry_after_seconds=retry_after)


async def cleanup_expired_counters(db: AsyncSession, *, retention_seconds: Optional[int] = None) -> int:
    retention_seconds = retention_seconds or settings.RATE_LIMIT_RETENTION_SECONDS
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=retention_seconds)
    deleted = await crud.crud_rate_limit.delete_older_than(db, cutoff=cutoff)
    await db.commit()
    logger.info(f"Deleted {deleted} expired rate limit counters older than {cutoff.isoformat()}")
    return deleted
