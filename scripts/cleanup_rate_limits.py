import argparse
import asyncio
import logging
import sys
import os

from dotenv import load_dotenv

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
load_dotenv()

from app.core.config import settings
from app.db.session import AsyncSessionLocal, engine
from app.services.rate_limiter import cleanup_expired_counters

logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger(__name__)


async def main(retention_seconds: int) -> None:
    async with AsyncSessionLocal() as db:
        deleted = await cleanup_expired_counters(db, retention_seconds=retention_seconds)
    logger.info(f"Rate limit cleanup finished, {deleted} rows removed")
    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Delete rate limit counters for windows that have passed.")
    parser.add_argument(
        "--retention-seconds",
        type=int,
        default=settings.RATE_LIMIT_RETENTION_SECONDS,
        help="Keep counters whose window started within this many seconds.",
    )
    args = parser.parse_args()
    asyncio.run(main(args.retention_seconds))
