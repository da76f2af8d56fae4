# /flowbot/utils/logging.py

import logging
import sys
from typing import Optional

import structlog
from flowbot.config.settings import settings

# This utility sets up structured logging (JSON outside development) so the
# core, the router and the transport glue all log in the same format.


def setup_logging(environment: Optional[str] = None, level: int = logging.INFO):
    """
    Configures structlog and routes the standard logging module through the
    same processors. Safe to call more than once: the handler it installs on
    the root logger is replaced rather than duplicated.
    """
    environment = environment or settings.environment

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if environment == "development":
        final_processor = structlog.dev.ConsoleRenderer()
    else:
        final_processor = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=final_processor,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.set_name("flowbot")

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if existing.get_name() == "flowbot":
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # The Redis client is chatty at DEBUG level
    logging.getLogger("redis").setLevel(logging.WARNING)
