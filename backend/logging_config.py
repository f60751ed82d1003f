"""
Reconciliation Service - Logging Setup

JSON lines in production (one object per record, audit fields at the top
level), plain text in development.
"""

import logging
import json
import sys
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# LogRecord attributes that are not user-supplied `extra` fields
_RESERVED_ATTRS = frozenset([
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
])

# Audit and request fields lifted to the top level of each JSON line
_CONTEXT_FIELDS = ("request_id", "actor", "event", "session_id", "account_ref")


class JSONFormatter(logging.Formatter):
    """
    One JSON object per log line.

    Audit fields (event, session_id, account_ref, actor) and the request id
    are top-level keys so log search can filter a single session; any other
    `extra` values are nested under "extra".
    """

    def __init__(self, service_name: str = "bank-reconciliation"):
        super().__init__()
        self.service_name = service_name
        self.environment = os.environ.get("ENVIRONMENT", "development")

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "service": self.service_name,
            "env": self.environment,
            "source": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        extra: Dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            if key in _CONTEXT_FIELDS:
                if value is not None:
                    entry[key] = value
            else:
                extra[key] = value
        if extra:
            entry["extra"] = extra

        if record.exc_info and record.exc_info[0]:
            entry["error"] = {
                "type": record.exc_info[0].__name__,
                "detail": str(record.exc_info[1]),
                "stack": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=str)


class RequestContextFilter(logging.Filter):
    """Stamps every record with the current request id and X-User-Id actor."""

    def __init__(self):
        super().__init__()
        self._request_id: Optional[str] = None
        self._actor: Optional[str] = None

    def set_request_context(self, request_id: Optional[str] = None, actor: Optional[str] = None):
        self._request_id = request_id
        self._actor = actor

    def clear_request_context(self):
        self.set_request_context(None, None)

    def filter(self, record: logging.LogRecord) -> bool:
        # Values passed through `extra` win over the request context
        if getattr(record, "request_id", None) is None:
            record.request_id = self._request_id
        if not hasattr(record, "actor"):
            record.actor = self._actor
        return True


_request_context_filter: Optional[RequestContextFilter] = None

PLAIN_FORMAT = "%(asctime)s %(levelname)-7s [%(request_id)s] %(name)s: %(message)s"


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    service_name: str = "bank-reconciliation"
) -> logging.Logger:
    """
    Replace the root handlers with a single stdout handler.

    Args:
        level: Root log level name; unknown names fall back to INFO
        json_format: JSONFormatter when True, PLAIN_FORMAT otherwise
        service_name: Value of the "service" key in JSON lines
    """
    global _request_context_filter

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        JSONFormatter(service_name=service_name) if json_format else logging.Formatter(PLAIN_FORMAT)
    )
    _request_context_filter = RequestContextFilter()
    handler.addFilter(_request_context_filter)
    root_logger.addHandler(handler)

    # Per-request access lines come from the request middleware
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_request_context(request_id: Optional[str] = None, actor: Optional[str] = None):
    """Attach a request id and actor to every record until cleared."""
    if _request_context_filter:
        _request_context_filter.set_request_context(request_id, actor)


def clear_request_context():
    if _request_context_filter:
        _request_context_filter.clear_request_context()
