from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from crm_analytics.context import current_context, get_correlation_id


# Structured ``extra`` keys copied into the ``fields`` object of each line.
STRUCTURED_FIELDS = (
    "method",
    "path",
    "status_code",
    "duration_ms",
    "metric",
    "query",
    "field",
    "value",
    "user_id",
    "error",
    "environment",
    "timezone",
)
_MAX_ERROR_LENGTH = 500


class RequestContextFilter(logging.Filter):
    """Stamps records with the correlation id and caller of the active request."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = current_context()
        if not getattr(record, "correlation_id", None):
            record.correlation_id = context.correlation_id
        if not getattr(record, "user_id", None) and context.user_id is not None:
            record.user_id = context.user_id
        return True


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            key: getattr(record, key) for key in STRUCTURED_FIELDS if getattr(record, key, None) is not None
        }
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        return json.dumps(
            {
                "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "correlation_id": getattr(record, "correlation_id", None),
                "fields": fields,
            },
            default=str,
        )


def _stamp_correlation_id(base: Any) -> Any:
    def factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        record = base(*args, **kwargs)
        record.correlation_id = get_correlation_id()
        return record

    return factory


def configure_logging(level: str | None = None) -> None:
    """Send JSON lines to stdout; safe to call more than once."""
    root_logger = logging.getLogger()
    if getattr(root_logger, "_crm_analytics_configured", False):
        return

    resolved = getattr(logging, (level or os.getenv("LOG_LEVEL", "INFO")).upper(), logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(RequestContextFilter())

    root_logger.handlers.clear()
    root_logger.setLevel(resolved)
    root_logger.addHandler(handler)
    # The factory runs before ``extra`` is applied, so it may only set keys no caller passes.
    logging.setLogRecordFactory(_stamp_correlation_id(logging.getLogRecordFactory()))
    root_logger._crm_analytics_configured = True  # type: ignore[attr-defined]
