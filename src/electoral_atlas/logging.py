"""Logging configuration for Electoral Atlas using loguru."""

import sys
from pathlib import Path

from loguru import logger

from electoral_atlas.config import Settings

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
)
DEBUG_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

VERBOSE_LEVELS = ("TRACE", "DEBUG")


def setup_logging(settings: Settings) -> list[int]:
    """
    Replace loguru's default sink with a console sink and an optional log file.

    The console shows source locations, backtraces and variable values only
    at DEBUG or TRACE. The file sink is skipped when ``settings.log_file`` is
    empty; otherwise it rotates, expires and compresses as configured.

    Args:
        settings: Application settings with the log level and file options.

    Returns:
        Ids of the sinks added, for callers that want to remove them again.
    """
    logger.remove()

    level = settings.log_level.upper()
    verbose = level in VERBOSE_LEVELS
    sink_ids = [
        logger.add(
            sys.stderr,
            level=level,
            format=DEBUG_CONSOLE_FORMAT if verbose else CONSOLE_FORMAT,
            backtrace=verbose,
            diagnose=verbose,
        )
    ]

    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        sink_ids.append(
            logger.add(
                settings.log_file,
                level=level,
                format=FILE_FORMAT,
                rotation=settings.log_rotation,
                retention=settings.log_retention,
                compression=settings.log_compression,
                serialize=settings.log_serialize,
            )
        )

    logger.info("Logging configured: level={}, file={}", level, settings.log_file or "-")
    return sink_ids
