import argparse
import asyncio
import logging
import signal
import sys
import os

from dotenv import load_dotenv

# Make sure paths are correct for script execution
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
load_dotenv()

from app.core.config import settings
from app.db.session import AsyncSessionLocal, engine
from app.services.webhook_dispatcher import WebhookDispatcher

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("webhook_worker")


def _install_signal_handlers(dispatcher: WebhookDispatcher) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, dispatcher.stop)
        except NotImplementedError:
            logger.debug(f"{sig.name} handler not supported on this platform")


async def main(once: bool, poll_seconds: float) -> None:
    if settings.WEBHOOK_SIGNING_SECRET is None:
        logger.warning("WEBHOOK_SIGNING_SECRET is not set; tenants without their own secret will fail delivery")

    dispatcher = WebhookDispatcher(AsyncSessionLocal)
    try:
        if once:
            outcomes = await dispatcher.run_once()
            logger.info(f"Processed {len(outcomes)} deliveries in single-run mode")
        else:
            _install_signal_handlers(dispatcher)
            await dispatcher.run_forever(poll_seconds=poll_seconds)
    finally:
        await dispatcher.aclose()
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Deliver pending webhooks to tenant endpoints.")
    parser.add_argument("--once", action="store_true", help="Process one batch of due deliveries and exit.")
    parser.add_argument(
        "--poll-seconds",
        type=float,
        default=settings.WEBHOOK_WORKER_POLL_SECONDS,
        help="Sleep between polls when running continuously.",
    )
    args = parser.parse_args()
    asyncio.run(main(args.once, args.poll_seconds))
