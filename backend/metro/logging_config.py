"""Logging configuration for the relay.

Debug mode logs one coloured line per record; otherwise each record is a JSON
object. Relay log calls pass ``request_id`` and ``client`` through ``extra``,
and both formatters surface them.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from metro.config import Settings

# Fields relay code attaches via `extra`, in display order
CONTEXT_FIELDS = ("request_id", "client")

# Attributes every LogRecord carries
_RECORD_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


def _context(record: logging.LogRecord) -> dict[str, Any]:
    """Collect non-standard attributes, known context fields first."""
    context = {
        field: getattr(record, field)
        for field in CONTEXT_FIELDS
        if getattr(record, field, None) is not None
    }
    for key, value in record.__dict__.items():
        if key in _RECORD_ATTRS or key in context or key.startswith("_"):
            continue
        if value is not None:
            context[key] = value
    return context


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context(record),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Coloured single-line output for local runs."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        time_str = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        tags = "".join(
            f" [{getattr(record, field)}]"
            for field in CONTEXT_FIELDS
            if getattr(record, field, None) is not None
        )
        msg = (
            f"{color}{time_str} {record.levelname:8}{self.RESET}{tags} "
            f"[{record.name}] {record.getMessage()}"
        )
        if record.exc_info:
            msg += f"\n{self.formatException(record.exc_info)}"
        return msg


def setup_logging(settings: Settings) -> None:
    """Point the root logger at stdout with the formatter for this mode."""
    log_level = logging.DEBUG if settings.debug else logging.INFO
    formatter: logging.Formatter = (
        DevelopmentFormatter() if settings.debug else JSONFormatter()
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    # httpx logs full request URLs, which carry the API key
    for name in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)
