# /flowbot/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from flowbot.container import ApplicationContainer
from flowbot.utils.logging import setup_logging

# This file manages the flow core's lifespan: logging setup and the rate
# controller's refill task on startup, store and connection cleanup on shutdown.

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(container: ApplicationContainer) -> AsyncIterator[ApplicationContainer]:
    """Lifespan manager for startup and shutdown of an ApplicationContainer."""
    setup_logging(container.settings.environment)

    logger.info("Flow core starting up...")
    await container.start()
    logger.info("Flow core startup complete. Ready to handle messages.")

    try:
        yield container
    finally:
        logger.info("Flow core shutting down...")
        await container.stop()
