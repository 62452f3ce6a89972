"""Logging configuration.

LOG_FORMAT picks the handler output:
- "json": one JSON object per line
- "text": human-readable lines

Both carry ``request_id`` (the HTTP request a line was logged under) and
``execution_id`` (the request that owns the scrape doing the work). A line
from a shared scrape has the owner as execution_id, so joiners that logged
"owned by <id>" can be matched to it.
"""

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from guidestats.middleware.request_id import get_execution_id, get_request_id

TEXT_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s "
    "[req=%(request_id)s exec=%(execution_id)s] %(message)s"
)
JSON_FIELDS = "%(asctime)s %(name)s %(levelname)s %(message)s %(request_id)s %(execution_id)s"

# Third-party loggers held above the root level
QUIET_LOGGERS = {"playwright": logging.ERROR}


class TraceContextFilter(logging.Filter):
    """Stamp request_id and execution_id on every record."""

    def filter(self, record):
        record.request_id = get_request_id()
        record.execution_id = get_execution_id()
        return True


class PlaywrightPipeFilter(logging.Filter):
    """Drop Playwright's 'pipe closed by peer' warnings.

    They arrive in bursts whenever the idle timer tears the browser down.
    """

    def filter(self, record):
        return "pipe closed by peer" not in record.getMessage()


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter(
            fmt=JSON_FIELDS,
            rename_fields={
                "levelname": "level",
                "name": "logger",
                "asctime": "timestamp",
            },
        )
    return logging.Formatter(TEXT_FORMAT)


def configure_logging(log_format: str = "json", log_level: str = "INFO"):
    """Configure the root logger.

    Args:
        log_format: "json" or "text"; anything else falls back to text
        log_level: Python log level name
    """
    root = logging.getLogger()
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(TraceContextFilter())
    handler.addFilter(PlaywrightPipeFilter())
    handler.setFormatter(build_formatter(log_format))

    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
