"""
Logging setup for the receptionist logger.

All engine modules log through logging.getLogger(LOGGER_NAME). configure_logging
attaches a stdout handler and, when a log directory is configured, a size-rotated
file handler to that logger. It can be called again (with a new level or
directory) and replaces the handlers it installed earlier rather than stacking
them. Chatty client libraries are held at WARNING so per-frame and per-request
noise from the media and collaborator connections stays out of the call logs.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from receptionist.config.constants import LOGGER_NAME

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_NAME = "receptionist.log"
MAX_LOG_SIZE = 10 * 1024 * 1024
BACKUP_COUNT = 5

QUIET_LOGGERS = ("httpx", "httpcore", "websockets", "websockets.client")

_UNSET = object()


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _file_handler(log_dir: Union[str, Path], formatter: logging.Formatter,
                  logger: logging.Logger) -> Optional[logging.Handler]:
    directory = Path(log_dir)
    try:
        directory.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(directory / LOG_FILE_NAME, maxBytes=MAX_LOG_SIZE,
                                      backupCount=BACKUP_COUNT)
    except OSError as e:
        logger.warning(f"File logging disabled, cannot write to {directory}: {e}")
        return None
    handler.setFormatter(formatter)
    return handler


def configure_logging(level: Optional[str] = None, log_dir=_UNSET) -> logging.Logger:
    """
    Configure the receptionist logger.

    Args:
        level: Level name; falls back to LOG_LEVEL, then INFO
        log_dir: Directory for the rotating log file. Defaults to LOG_DIR (or
            "logs"); None or an empty LOG_DIR logs to stdout only

    Returns:
        logging.Logger: The configured logger
    """
    if log_dir is _UNSET:
        log_dir = os.getenv("LOG_DIR", "logs") or None

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_resolve_level(level))
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    logger.addHandler(console)
    logger.propagate = False

    if log_dir:
        handler = _file_handler(log_dir, formatter, logger)
        if handler is not None:
            logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug(f"Logging configured (level {logging.getLevelName(logger.level)}, "
                 f"file logging {'on' if len(logger.handlers) > 1 else 'off'})")
    return logger
