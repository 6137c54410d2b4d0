from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from flask import Flask, Response, g, has_request_context, request


CORRELATION_HEADER = "X-Correlation-ID"


class PasteRequestFilter(logging.Filter):
    """Stamp each record with the correlation id and route of the request being served."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not has_request_context():
            return True
        if getattr(record, "correlation_id", None) is None:
            record.correlation_id = g.get("correlation_id")
        record.http_method = request.method
        record.http_path = request.path
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; structured ``extra=`` fields are kept when set."""

    fields = (
        "event",
        "correlation_id",
        "http_method",
        "http_path",
        "paste_id",
        "reason",
        "error_type",
    )

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (name, getattr(record, name))
            for name in self.fields
            if getattr(record, name, None) is not None
        )
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def get_correlation_id() -> str | None:
    """Correlation id of the current request, or ``None`` outside one."""
    if not has_request_context():
        return None
    return g.get("correlation_id")


def configure_logging(level: str | int = logging.INFO) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    # Filter on the handler so records propagated from module loggers pass through it.
    handler.addFilter(PasteRequestFilter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]


def _assign_correlation_id() -> None:
    g.correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid4())


def _echo_correlation_id(response: Response) -> Response:
    correlation_id = get_correlation_id()
    if correlation_id:
        response.headers[CORRELATION_HEADER] = correlation_id
    return response


def init_observability(app: Flask) -> None:
    """
    Switch the process to JSON logging and tag every request with a
    correlation id, taken from ``X-Correlation-ID`` or freshly generated and
    echoed back on the response.
    """

    configure_logging(app.config.get("LOG_LEVEL", logging.INFO))
    app.before_request(_assign_correlation_id)
    app.after_request(_echo_correlation_id)
