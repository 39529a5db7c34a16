"""
Logging configuration for the placement engine
Uses loguru for better formatting and features
"""

import sys
from loguru import logger
from pathlib import Path

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan>:<cyan>{function}</cyan> | <level>{message}</level>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | "
    "{extra[component]}:{function}:{line} | {message}"
)

# Records emitted before setup_logging() still need a component for the format
logger.configure(extra={"component": "placement"})


def get_logger(name: str = "PlacementEngine"):
    """
    Get a logger bound to a component name

    Sinks are installed once by setup_logging(); this only binds context,
    so modules can call it at import time without touching handlers.

    Args:
        name: Component name (will appear in log messages)

    Returns:
        Bound logger instance
    """
    return logger.bind(component=name)


def setup_logging(
    component_name: str = "PlacementEngine",
    log_dir: str = None,
    level: str = "INFO"
):
    """
    Install console (and optionally file) sinks for the engine

    Args:
        component_name: Name of the component (used for the log file name)
        log_dir: Optional directory for log files
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured logger bound to component_name
    """
    # Remove default handler
    logger.remove()

    # Console handler with colors
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=level,
        colorize=True
    )

    # File handler (if specified)
    if log_dir:
        log_path = Path(log_dir) / f"{component_name}.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            str(log_path),
            format=FILE_FORMAT,
            level=level,
            rotation="10 MB",  # Rotate when file reaches 10MB
            retention="7 days",  # Keep logs for 7 days
            compression="zip"  # Compress rotated logs
        )

    return get_logger(component_name)
