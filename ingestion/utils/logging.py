"""Logging configuration.

Records emitted by the worker carry the ids of the unit of work in their
``extra``. Both formatters surface those ids so a single integration,
delivery or task can be followed across workers.
"""

import logging
import json
import sys
from datetime import datetime
from typing import Any, Dict

from ingestion.core.config import get_settings

settings = get_settings()

# Ids that identify the unit of work a record belongs to, in display order
CONTEXT_KEYS = ("worker_id", "task", "task_id", "integration_id", "delivery_id", "platform")

_RESERVED_ATTRS = frozenset([
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName", "message", "asctime",
])


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Context ids present on ``record``."""
    return {key: getattr(record, key) for key in CONTEXT_KEYS if getattr(record, key, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Work-unit ids go under ``context``; any other ``extra`` field goes
    under ``data``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.utcfromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": settings.service_name,
            "environment": settings.environment,
        }

        context = record_context(record)
        if context:
            log_data["context"] = context

        data = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and key not in CONTEXT_KEYS
        }
        if data:
            log_data["data"] = data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ContextFormatter(logging.Formatter):
    """Plain-text formatter that appends work-unit ids as ``key=value``."""

    def __init__(self):
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line

        head, sep, tail = line.partition("\n")
        ids = " ".join(f"{key}={value}" for key, value in context.items())
        return f"{head} [{ids}]{sep}{tail}"


def setup_logging():
    """Setup logging configuration."""
    logging.root.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ContextFormatter())

    logging.root.setLevel(settings.log_level)
    logging.root.addHandler(handler)

    # Reduce noise from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)
