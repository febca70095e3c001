import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI

from dealflow.core.config import settings
from dealflow.core.logging import get_logger
from dealflow.db.session import AsyncSessionLocal, engine
from dealflow.services.mail.mailgun_client import get_email_transport
from dealflow.services.workflows.dispatcher import ActionDispatcher
from dealflow.services.workflows.scheduler import DeliveryScheduler
from dealflow.services.workflows.worker import scheduler_worker_task

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Lifespan function for the FastAPI application.
    Handles startup and shutdown events for application services.
    """
    # 1. Start the delivery worker
    worker_task = None
    if settings.SCHEDULER_ENABLED:
        dispatcher = ActionDispatcher(AsyncSessionLocal, get_email_transport())
        scheduler = DeliveryScheduler(AsyncSessionLocal, dispatcher)
        worker_task = asyncio.create_task(scheduler_worker_task(scheduler))
    else:
        logger.info("Scheduler worker disabled (SCHEDULER_ENABLED=false)")

    yield

    # 2. Stop the delivery worker
    if worker_task is not None:
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass

    # 3. Dispose Database Engine
    await engine.dispose()
