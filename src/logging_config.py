# src/logging_config.py
#
# Centralized logging configuration for the scheduling engine

import logging
import sys

from config.settings import LOG_LEVEL


def setup_logging(log_level: str = None):
    """
    Setup console logging for the engine.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
                   Defaults to LOG_LEVEL from settings
    """
    level_name = (log_level or LOG_LEVEL).upper()

    formatter = logging.Formatter(
        fmt='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))

    # Only one console handler, even when imported from several entry points
    if not any(getattr(h, "_scheduler_console", False) for h in root_logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler._scheduler_console = True
        root_logger.addHandler(console_handler)

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return root_logger


# Initialize logging on import
setup_logging()

logger = logging.getLogger(__name__)
