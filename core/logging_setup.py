"""Logging for the embedding store.

Events are logged as snake_case names with their details passed through
``extra``. Both formatters render those details: the plain formatter appends
``key=value`` pairs after the event name, the JSON formatter merges them into
the payload. Content-bearing fields are masked when ``LOG_REDACT_CONTENT`` is
set.
"""

import json
import logging
import sys
from logging import Logger, LoggerAdapter
from typing import Any, Dict, List

from core import config

PLAIN_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [run=%(run_id)s] %(message)s"

REDACTED = "[REDACTED]"

# Fields that may carry user content
REDACTED_FIELDS = ("query", "content", "item_id")

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "run_id", "taskName"}


def extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the ``extra`` attributes attached to ``record``, sorted by name."""
    return {
        key: value
        for key, value in sorted(vars(record).items())
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class PlainFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__(fmt=PLAIN_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "run_id"):
            record.run_id = "-"
        line = super().format(record)
        fields = extra_fields(record)
        if not fields:
            return line
        # Keep any traceback below the event line
        head, sep, tail = line.partition("\n")
        pairs = " ".join(f"{key}={value}" for key, value in fields.items())
        return f"{head} {pairs}{sep}{tail}"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "event": record.getMessage(),
            "run_id": getattr(record, "run_id", "-"),
        }
        payload.update(extra_fields(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class RedactFilter(logging.Filter):
    """Mask content-bearing ``extra`` fields while redaction is switched on."""

    def filter(self, record: logging.LogRecord) -> bool:
        if config.LOG_REDACT_CONTENT:
            for field in REDACTED_FIELDS:
                if hasattr(record, field):
                    setattr(record, field, REDACTED)
        return True


def build_handlers() -> List[logging.Handler]:
    formatter: logging.Formatter = (
        JsonFormatter() if config.LOG_FORMAT.lower() == "json" else PlainFormatter()
    )
    # stdout is left to scripts printing results
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.LOG_FILE_PATH:
        handlers.append(logging.FileHandler(config.LOG_FILE_PATH))
    redact = RedactFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(redact)
    return handlers


def _configure_root() -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(level=level, handlers=build_handlers())


def get_logger(name: str, run_id: str | None = None) -> Logger | LoggerAdapter:
    """Return a logger, tagged with ``run_id`` when one is given."""
    _configure_root()
    base = logging.getLogger(name)
    if run_id:
        return LoggerAdapter(base, extra={"run_id": run_id})
    return base
