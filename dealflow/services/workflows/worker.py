"""
Background task that fires due scheduled emails.

Wakes every ``SCHEDULER_POLL_SECONDS`` or as soon as the ingestion path
signals that new occurrences were scheduled.
"""

import asyncio

from dealflow.core.config import settings
from dealflow.core.logging import get_logger
from dealflow.core.notifier import wait_for_notification
from dealflow.services.workflows.scheduler import DeliveryScheduler

logger = get_logger(__name__)


async def scheduler_worker_task(scheduler: DeliveryScheduler):
    """
    Background task that:
    1. Fires every due occurrence (and reclaims stale claims)
    2. Waits for a notification or the poll interval
    3. Repeats until cancelled
    """
    logger.info(
        "Scheduler worker started (poll every %.0fs)", settings.SCHEDULER_POLL_SECONDS
    )

    while True:
        try:
            counts = await scheduler.fire_due(limit=settings.SCHEDULER_BATCH_SIZE)
            if counts:
                logger.info("Scheduler worker fired occurrences: %s", counts)
                # A full batch may mean more are due; go again right away.
                if sum(counts.values()) >= settings.SCHEDULER_BATCH_SIZE:
                    continue

            notified = await wait_for_notification(
                timeout=settings.SCHEDULER_POLL_SECONDS
            )
            if not notified:
                logger.debug("Scheduler worker keep-alive")

        except asyncio.CancelledError:
            logger.info("Scheduler worker cancelled")
            break
        except Exception as e:
            logger.error("Unexpected error in scheduler worker: %s", e, exc_info=True)
            await asyncio.sleep(5.0)

    logger.info("Scheduler worker stopped")
