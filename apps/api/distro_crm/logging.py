"""JSON logging for the API and the refresh worker.

Every record carries the request ``correlation_id`` and, while a summary
refresh is running, its ``refresh_run_id``. Structured ``extra`` values are
emitted under ``fields`` only when whitelisted in ``STRUCTURED_FIELDS``.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from distro_crm.context import get_correlation_id, get_refresh_run_id
from distro_crm.core.config import get_settings


STRUCTURED_FIELDS = frozenset(
    {
        # http
        "method",
        "path",
        "status_code",
        "duration_ms",
        # crm validation and lifecycle
        "entity",
        "entity_id",
        "field",
        "reference",
        "violation_kind",
        "opportunity_id",
        "from_stage",
        "to_stage",
        # principal activity refresh
        "principal_id",
        "row_count",
        "inconsistency_count",
        "reason",
        "budget_ms",
        "status",
        "event_name",
        "error",
    }
)
_MAX_ERROR_LENGTH = 500


def _attach_context(record: logging.LogRecord) -> logging.LogRecord:
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    if not getattr(record, "refresh_run_id", None):
        record.refresh_run_id = get_refresh_run_id()
    return record


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        _attach_context(record)
        return True


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
        }
        refresh_run_id = getattr(record, "refresh_run_id", None)
        if refresh_run_id:
            payload["refresh_run_id"] = refresh_run_id

        fields = {key: value for key, value in record.__dict__.items() if key in STRUCTURED_FIELDS}
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)
        payload["fields"] = fields
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None) -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_distro_configured", False):
        return

    resolved = getattr(logging, (level or get_settings().log_level).upper(), logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    # Records created outside a handler (e.g. captured by caplog) get the same context.
    default_factory = logging.getLogRecordFactory()

    def record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        return _attach_context(default_factory(*args, **kwargs))

    root_logger.handlers.clear()
    root_logger.filters.clear()
    root_logger.setLevel(resolved)
    logging.setLogRecordFactory(record_factory)
    root_logger.addHandler(handler)
    root_logger._distro_configured = True  # type: ignore[attr-defined]
