"""
Logging setup.

Modules log through the shared loguru logger, bound to a component name:

    log = logger.bind(component="router")
    log.debug("Transition ready", transition="start_game")

Hosts call setup_logging() once to pick the level and sinks.
"""

from __future__ import annotations
from pathlib import Path
import sys

from loguru import logger


DEFAULT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> | "
    "<level>{message}</level>"
)

VALID_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")

# Records logged without bind() still render with the default format.
logger.configure(extra={"component": "turnforge"})


def setup_logging(
    log_level: str = "INFO",
    log_file: str | Path | None = None,
    console_output: bool = True,
    format_string: str | None = None,
) -> None:
    """
    Configure loguru sinks for the engine.

    Args:
        log_level: Minimum level ("DEBUG", "INFO", "WARNING", ...)
        log_file: Optional file to log to in addition to the console
        console_output: Log to stderr
        format_string: Custom loguru format

    Raises:
        ValueError: If log_level is not a loguru level
    """
    level = log_level.upper()
    if level not in VALID_LEVELS:
        raise ValueError(
            f"Invalid log level: '{log_level}'. Must be one of: {', '.join(VALID_LEVELS)}"
        )

    logger.remove()
    fmt = format_string or DEFAULT_FORMAT

    if console_output:
        logger.add(sys.stderr, format=fmt, level=level, colorize=True)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(str(path), format=fmt, level=level, enqueue=True)

    logger.bind(component="logging").info(
        f"Logging configured: level={level}, console={console_output}, file={log_file}"
    )
