"""
Logging for the raspi-io client.

Everything logs below the ``raspi_io`` logger. Records carry their context in
``extra`` fields (host, pin, phase, sequence), which JSONFormatter writes out
as top-level keys so one connection can be followed through a log stream.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from raspi_io.config import LoggingConfig

ROOT_LOGGER_NAME = "raspi_io"

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes of a bare LogRecord; anything else on a record came via `extra`
_STANDARD_RECORD_KEYS = frozenset(
    logging.LogRecord("", logging.NOTSET, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_RECORD_KEYS and value is not None
    }


class JSONFormatter(logging.Formatter):
    """
    Render each record as one JSON object per line.

    Keys are ``timestamp`` (UTC, ISO 8601), ``level``, ``logger`` and
    ``message``, then ``exception`` when the record has exc_info, then the
    record's extra fields. Values JSON cannot encode are written with str().
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(_extra_fields(record))
        return json.dumps(entry, default=str)


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = True,
    log_to_stdout: bool = False,
) -> logging.Logger:
    """
    Attach a single stream handler to the ``raspi_io`` logger.

    Calling it again replaces the previous handler. The logger stops
    propagating to the root logger, and writes to stderr unless
    ``log_to_stdout`` is set so that command output on stdout stays clean.

    Args:
        config: Logging settings; when given, the keyword arguments are
            ignored.
        level: Level name such as "debug" or "WARNING".
        json_format: Use JSONFormatter instead of the plain-text format.
        log_to_stdout: Write to stdout instead of stderr.

    Returns:
        The ``raspi_io`` logger.

    Example:
        >>> logger = setup_logging(level="debug", json_format=False)
        >>> logger.info("Connected", extra={"host": "raspberrypi.local"})
    """
    if config is not None:
        level = config.level
        json_format = config.json_format
        log_to_stdout = config.log_to_stdout
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout if log_to_stdout else sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(
        JSONFormatter() if json_format else logging.Formatter(DEFAULT_LOG_FORMAT)
    )

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger below ``raspi_io``, prefixing ``name`` when needed."""
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
