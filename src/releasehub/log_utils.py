"""
Logging for ReleaseHub.

A single `releasehub` logger writes to the console through rich. The server
can add a rotating log file with add_file_logging(). The initial console level
comes from RELEASEHUB_LOG_LEVEL.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

from releasehub.constants import (
    DEBUG_LOG_FORMAT,
    INFO_LOG_FORMAT,
    LOG_DATE_FORMAT,
    LOG_FILE_BACKUP_COUNT,
    LOG_FILE_MAX_BYTES,
    LOG_FILE_NAME,
    LOG_LEVEL_ENV_VAR,
    LOGGER_NAME,
)

logger = logging.getLogger(LOGGER_NAME)

_file_handler: Optional[RotatingFileHandler] = None


def _resolve_level(level_name: str) -> Optional[int]:
    level = logging.getLevelName(str(level_name).upper())
    return level if isinstance(level, int) else None


def _formatter_for(handler: logging.Handler, level: int) -> logging.Formatter:
    # rich renders time and level itself
    if isinstance(handler, RichHandler):
        return logging.Formatter("%(message)s")
    fmt = INFO_LOG_FORMAT if level >= logging.INFO else DEBUG_LOG_FORMAT
    return logging.Formatter(fmt, datefmt=LOG_DATE_FORMAT)


def set_log_level(level_name: str) -> None:
    """
    Change the level of the releasehub logger and of every handler attached to it.

    File handlers switch to the more verbose DEBUG_LOG_FORMAT below INFO. An
    unknown level name is reported and ignored.

    Parameters:
        level_name (str): Case-insensitive level name such as "debug" or "WARNING".
    """
    level = _resolve_level(level_name)
    if level is None:
        logger.warning(f"Invalid log level name: {level_name}. Using current level.")
        return

    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
        handler.setFormatter(_formatter_for(handler, level))
    logger.debug(f"Log level set to {logging.getLevelName(level)}")


def add_file_logging(log_dir_path: Path, level_name: str = "INFO") -> None:
    """
    Also write log records to `<log_dir_path>/releasehub.log`.

    The file rotates at LOG_FILE_MAX_BYTES and keeps LOG_FILE_BACKUP_COUNT
    backups. Calling this again replaces the previous file handler.
    """
    global _file_handler
    if _file_handler is not None:
        logger.removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None

    level = _resolve_level(level_name)
    if level is None:
        logger.warning(f"Invalid file log level name: {level_name}. Defaulting to INFO.")
        level = logging.INFO

    log_dir_path = Path(log_dir_path)
    log_dir_path.mkdir(parents=True, exist_ok=True)
    log_file = log_dir_path / LOG_FILE_NAME

    handler = RotatingFileHandler(
        log_file,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(_formatter_for(handler, level))
    logger.addHandler(handler)
    _file_handler = handler

    logger.info(f"Logging to {log_file} at {logging.getLevelName(level)}")


def _initialize_logger() -> None:
    """Attach the rich console handler; file logging stays off until requested."""
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    env_level = os.environ.get(LOG_LEVEL_ENV_VAR, "INFO")
    level = _resolve_level(env_level)

    console = RichHandler(
        rich_tracebacks=True,
        show_path=False,
        markup=False,
        log_time_format=LOG_DATE_FORMAT,
    )
    console.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console)

    if level is None:
        logger.warning(f"Invalid {LOG_LEVEL_ENV_VAR}={env_level}; defaulting to INFO.")
        level = logging.INFO
    logger.setLevel(level)
    console.setLevel(level)


_initialize_logger()
