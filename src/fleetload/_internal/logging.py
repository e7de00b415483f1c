"""Logging setup for fleetload.

Progress lines and the final summary are printed by the CLI through Rich;
the ``fleetload`` logger carries diagnostics (probe failures, worker
lifecycle, phase transitions) to stderr.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

_ROOT = "fleetload"

# Libraries whose DEBUG output drowns the driver's own diagnostics.
_NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "aiohttp.access")


class _JsonFormatter(logging.Formatter):
    """One-line JSON formatter.

    Keys: timestamp, level, logger, message, plus ``phase`` when the record
    was logged with ``extra={"phase": ...}``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        phase = getattr(record, "phase", None)
        if phase is not None:
            entry["phase"] = phase
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(
    level: int = logging.INFO,
    *,
    json_format: bool = False,
) -> logging.Logger:
    """Configure and return the ``fleetload`` root logger.

    Repeated calls only adjust levels; handlers are never duplicated.

    Args:
        level: Logging level for fleetload loggers.
        json_format: Emit JSON lines instead of human-readable records.

    Returns:
        The configured root logger of the package.
    """
    logger = logging.getLogger(_ROOT)
    logger.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child logger, e.g. ``get_logger("engine.pool")``."""
    return logging.getLogger(f"{_ROOT}.{name}")
