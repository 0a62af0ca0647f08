"""
Logger configuration for the vacuum rental backend.

Centralized logging setup with a consistent format and a level chosen by
environment (development/production).

Features:
- DEBUG level locally, INFO (or LOG_LEVEL) elsewhere
- Handler to stdout (container platforms collect stdout)
- Format: [TIMESTAMP] [LEVEL] [MODULE] MESSAGE
"""

import logging
import sys
from vacuum_backend.config import config


def setup_logger() -> None:
    """
    Configure global logging.

    Level:
    - ENVIRONMENT=local → DEBUG
    - Other environments → LOG_LEVEL (default INFO)

    Log format:
        [2026-01-10 14:30:00] [INFO] [vacuum_backend.services.liveness_monitor] Machine VAC-01 marked offline

    Usage:
        >>> from vacuum_backend.utils.logger import setup_logger
        >>> setup_logger()
        >>> logger = logging.getLogger(__name__)
    """
    if config.ENVIRONMENT == "local":
        level = logging.DEBUG
    else:
        level = logging.getLevelName(config.LOG_LEVEL.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(
        level=level,
        format='[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured: level={logging.getLevelName(level)}, environment={config.ENVIRONMENT}")


def get_logger(name: str) -> logging.Logger:
    """
    Logger factory per module.

    Args:
        name: Module name (usually __name__).

    Returns:
        Logger sharing the global configuration set by setup_logger().
    """
    return logging.getLogger(name)
