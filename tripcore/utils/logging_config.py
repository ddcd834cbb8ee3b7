"""
Structured logging configuration for the trip tracking core.

Console output carries the bound component and, when a log call is made in
the context of a trip, its id. Each pipeline stage (ingestion, tracking,
classification, segmentation, validation, sync) also gets its own JSON-lines
file so detection thresholds can be tuned from recorded sessions.

Environment:
    TRIPCORE_LOG_LEVEL: Console and application log level (default INFO)
    TRIPCORE_LOG_DIR: Directory for log files (default data/logs)
"""

import logging
import os
import sys
from pathlib import Path

from loguru import logger


class LogConfig:
    """Centralized logging configuration."""

    LOG_DIR = Path(os.environ.get("TRIPCORE_LOG_DIR", "data/logs"))
    LOG_FORMAT = (
        "<green>{time:HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[component]}</cyan> <magenta>[{extra[trip]}]</magenta> | "
        "<level>{message}</level>"
    )
    COMPONENTS = [
        "ingestion",
        "tracking",
        "classification",
        "segmentation",
        "validation",
        "sync",
    ]

    @classmethod
    def setup(cls, log_level: str = "INFO", enable_json: bool = True):
        """
        Set up logging for the entire application.

        Args:
            log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            enable_json: Whether to enable JSON logging to files
        """
        cls.LOG_DIR.mkdir(parents=True, exist_ok=True)

        logger.remove()
        logger.configure(extra={"component": "app", "trip": "-"})

        logger.add(
            sys.stderr,
            format=cls.LOG_FORMAT,
            level=log_level,
            colorize=True,
        )

        if enable_json:
            # Components bind dotted names ("tracking.detector"), so match on the prefix
            for component in cls.COMPONENTS:
                logger.add(
                    cls.LOG_DIR / f"{component}.jsonl",
                    format="{message}",
                    level="INFO",
                    rotation="1 day",
                    retention="30 days",
                    compression="zip",
                    serialize=True,
                    filter=lambda record, comp=component: str(
                        record["extra"].get("component", "")
                    ).split(".")[0] == comp,
                )

        logger.add(
            cls.LOG_DIR / "application.log",
            format=cls.LOG_FORMAT,
            level=log_level,
            rotation="50 MB",
            retention="7 days",
            compression="zip",
        )

        logger.info(f"Logging initialized at level {log_level}")


def get_logger(component: str):
    """
    Get a logger for a specific component.

    Args:
        component: Component name (e.g., 'ingestion', 'tracking.detector')

    Returns:
        Configured logger instance

    Example:
        >>> from tripcore.utils.logging_config import get_logger
        >>> logger = get_logger("tracking")
        >>> logger.bind(trip="trip_1").info("Trip started")
    """
    return logger.bind(component=component)


# Initialize logging on module import with default settings
# Can be reconfigured by calling LogConfig.setup() explicitly
try:
    LogConfig.setup(log_level=os.environ.get("TRIPCORE_LOG_LEVEL", "INFO"), enable_json=True)
except Exception as e:
    # Fallback to basic logging if setup fails
    logging.basicConfig(level=logging.INFO)
    logging.warning(f"Failed to initialize advanced logging: {e}")
