"""
Structured logging configuration for the ball tracking system.
Provides colored console logs and optional JSON log files per component.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger


class LogConfig:
    """Centralized logging configuration."""

    LOG_FORMAT = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[component]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
    )

    COMPONENTS = [
        "tracking",
        "simulation",
        "config",
        "performance",
    ]

    @classmethod
    def setup(
        cls,
        log_level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_json: bool = False,
    ):
        """
        Set up logging for the entire application.

        Args:
            log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files. Console only when None.
            enable_json: Whether to write JSON-lines logs per component
                (requires log_dir)
        """
        logger.remove()
        logger.configure(extra={"component": "app"})

        logger.add(
            sys.stderr,
            format=cls.LOG_FORMAT,
            level=log_level,
            colorize=True,
        )

        if log_dir is not None:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)

            if enable_json:
                for component in cls.COMPONENTS:
                    logger.add(
                        log_dir / f"{component}.jsonl",
                        format="{message}",
                        level=log_level,
                        rotation="1 day",
                        retention="7 days",
                        serialize=True,
                        filter=lambda record, comp=component: str(
                            record["extra"].get("component", "")
                        ).split(".")[0] == comp,
                    )

            logger.add(
                log_dir / "ball_filter.log",
                format=cls.LOG_FORMAT,
                level=log_level,
                rotation="100 MB",
                retention="7 days",
            )

        logger.bind(component="config").debug(f"Logging initialized at level {log_level}")


def get_logger(component: str):
    """
    Get a logger for a specific component.

    Args:
        component: Component name (e.g., 'tracking.filter', 'simulation')

    Returns:
        Configured logger instance

    Example:
        >>> from ball_tracking.utils.logging_config import get_logger
        >>> logger = get_logger("tracking.filter")
        >>> logger.info("Spawned hypothesis")
    """
    return logger.bind(component=component)


# Console logging on import; call LogConfig.setup() again to reconfigure
LogConfig.setup(log_level="INFO")
