# log.py
# SPDX-License-Identifier: MIT
"""Package logger setup.

Importing exifpipe only adds a NullHandler to the ``exifpipe`` logger; the
CLI calls :func:`configure_logging` (through ``LoggingConfig.apply``) to send
records to stderr or to a log file.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

__all__ = [
    "PACKAGE_LOGGER_NAME",
    "DEFAULT_LOG_FORMAT",
    "get_logger",
    "configure_logging",
]

PACKAGE_LOGGER_NAME = "exifpipe"
DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Set on handlers installed by configure_logging so later calls can swap them.
_OWNED = "_exifpipe_owned"

logging.getLogger(PACKAGE_LOGGER_NAME).addHandler(logging.NullHandler())


def _coerce_level(level: int | str) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return level


def get_logger(name: str | None = None) -> logging.Logger:
    """Return ``name``'s logger, or the package logger when omitted."""
    return logging.getLogger(name or PACKAGE_LOGGER_NAME)


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream=None,
    path: str | Path | None = None,
    fmt: str | None = None,
    propagate: bool = True,
    logger_name: str = PACKAGE_LOGGER_NAME,
) -> logging.Logger:
    """Send an exifpipe logger's records to one stream or one log file.

    A handler installed by an earlier call is closed and replaced, so
    calling this again (for example to move from stderr to a file) never
    duplicates output. Handlers added by the host application are left
    alone.

    Args:
        level (int | str): Logging level or level name; unknown names
            fall back to INFO.
        stream (IO[str] | None): Target stream; defaults to sys.stderr.
        path (str | Path | None): Log file, appended to. Parent
            directories are created. Takes precedence over ``stream``.
        fmt (str | None): Log format string.
        propagate (bool): Whether records also reach ancestor loggers.
        logger_name (str): Logger to configure.

    Returns:
        logging.Logger: The configured logger.
    """
    logger = get_logger(logger_name)
    logger.setLevel(_coerce_level(level))
    logger.propagate = propagate
    for old in [h for h in logger.handlers if getattr(h, _OWNED, False)]:
        logger.removeHandler(old)
        old.close()

    handler: logging.Handler
    if path is not None:
        target = Path(path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(target, encoding="utf-8")
    else:
        handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_LOG_FORMAT))
    setattr(handler, _OWNED, True)
    logger.addHandler(handler)
    return logger
