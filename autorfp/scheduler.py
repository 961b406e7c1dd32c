"""Background scheduler — periodic inbound mailbox polling.

Runs on a tick loop started from the app lifespan:
  - Inbox poll: every poll_interval_minutes — fetch new replies and store the
    ones that correlate to an invitation

A failing tick is logged and the loop carries on.
"""

import asyncio

from loguru import logger

from .config import settings
from .services.inbound_poller import InboundPoller

STARTUP_DELAY_SECONDS = 10


async def _scheduler_tick(poller: InboundPoller) -> None:
    stats = await poller.poll()
    if stats.stored:
        logger.info("Scheduled poll stored {} new replies", stats.stored)


async def start_scheduler(poller: InboundPoller, interval_minutes: int | None = None):
    """Launch the background scheduler loop. Call once on app startup."""
    interval = (interval_minutes or settings.poll_interval_minutes) * 60
    logger.info("Background scheduler started — inbox poll every {} min", interval // 60)

    # Let the app fully boot before the first tick
    await asyncio.sleep(STARTUP_DELAY_SECONDS)

    while True:
        try:
            await _scheduler_tick(poller)
        except Exception as e:
            logger.error("Scheduler tick error: {}", e)
        await asyncio.sleep(interval)
