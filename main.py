"""
Ride-sharing booking core -- background worker
==============================================
Runs the out-of-band sweep (ticket retry, stale payment holds).

    python main.py
"""

import asyncio
import logging
import signal

from rideshare.config import settings
from rideshare.infrastructure.database import async_session_factory, engine
from rideshare.infrastructure.redis_client import close_redis, get_redis
from rideshare.payments.router import PaymentRouter
from rideshare.security.encryption import EncryptionService
from rideshare.services.booking import BookingOrchestrator
from rideshare.workers.sweeper import start_sweep_loop, stop_sweep_loop

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_orchestrator() -> BookingOrchestrator:
    return BookingOrchestrator(
        async_session_factory,
        PaymentRouter.from_settings(settings.payments),
        EncryptionService(settings.encryption_key),
        payment_timeout=settings.payments.timeout_seconds,
        stale_hold_seconds=settings.stale_hold_seconds,
        default_currency=settings.payments.default_currency,
    )


async def main() -> None:
    if settings.encryption_key is None:
        logger.warning("ENCRYPTION_KEY is not set; tickets cannot be minted")

    redis = await get_redis()
    await start_sweep_loop(build_orchestrator(), redis)

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await shutdown.wait()
    finally:
        await stop_sweep_loop()
        await close_redis()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
