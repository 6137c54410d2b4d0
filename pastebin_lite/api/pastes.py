from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from http import HTTPStatus

from flask import Blueprint, current_app, request
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from pastebin_lite.api.schemas import (
    ErrorResponse,
    HealthResponse,
    PasteCreateRequest,
    PasteCreatedResponse,
    PasteViewResponse,
)
from pastebin_lite.db import SessionLocal, ping
from pastebin_lite.observability import get_correlation_id
from pastebin_lite.services.paste_service import (
    FIELD_ERRORS,
    InvalidPasteParameters,
    PasteNotFoundError,
    PasteService,
)


logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)

TEST_NOW_HEADER = "x-test-now-ms"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _error(message: str, status: HTTPStatus, field: str | None = None) -> tuple[dict, int]:
    return ErrorResponse(error=message, field=field).model_dump(exclude_none=True), status


def _paste_service() -> PasteService:
    return PasteService(
        session_factory=SessionLocal,
        max_content_bytes=current_app.config["MAX_CONTENT_BYTES"],
    )


def resolve_now() -> datetime:
    """
    Current time for this request.

    In test mode an ``x-test-now-ms`` header (epoch milliseconds) replaces the
    wall clock; otherwise the header is ignored.
    """

    if current_app.config.get("TEST_MODE", False):
        raw = request.headers.get(TEST_NOW_HEADER)
        if raw:
            try:
                return _EPOCH + timedelta(milliseconds=int(raw))
            except (ValueError, OverflowError):
                logger.warning(
                    "Ignoring unparseable test clock header",
                    extra={
                        "event": "test_clock_header_invalid",
                        "correlation_id": get_correlation_id(),
                    },
                )
    return datetime.now(timezone.utc)


def _share_url(paste_id: str) -> str:
    base_url = current_app.config.get("PUBLIC_BASE_URL") or request.host_url
    return f"{base_url.rstrip('/')}/p/{paste_id}"


@api_bp.route("/health", methods=["GET"])
def health() -> tuple[dict, int]:
    """Health check endpoint; also confirms the store answers."""

    try:
        ping()
    except SQLAlchemyError:
        logger.exception(
            "Health check could not reach the database",
            extra={"event": "store_error", "correlation_id": get_correlation_id()},
        )
        return HealthResponse(status="unavailable").model_dump(), HTTPStatus.SERVICE_UNAVAILABLE

    body = HealthResponse().model_dump()
    return body, HTTPStatus.OK


@api_bp.route("/pastes", methods=["POST"])
def create_paste() -> tuple[dict, int]:
    """
    Create a new paste.

    Type checks are handled by Pydantic; business rules by the service layer.
    """
    raw = request.get_json(force=True, silent=True)
    if not isinstance(raw, dict):
        return _error("Invalid JSON body", HTTPStatus.BAD_REQUEST)

    try:
        payload = PasteCreateRequest.model_validate(raw)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = str(first["loc"][0]) if first["loc"] else None
        message = FIELD_ERRORS.get(field or "", "Invalid request body")
        return _error(message, HTTPStatus.BAD_REQUEST, field)

    try:
        dto = _paste_service().create_paste(
            content=payload.content,
            ttl_seconds=payload.ttl_seconds,
            max_views=payload.max_views,
            now=resolve_now(),
        )
    except InvalidPasteParameters as exc:
        return _error(str(exc), HTTPStatus.BAD_REQUEST, exc.field)

    body = PasteCreatedResponse(id=dto["id"], url=_share_url(dto["id"]))
    return body.model_dump(), HTTPStatus.CREATED


@api_bp.route("/pastes/<paste_id>", methods=["GET"])
def view_paste(paste_id: str) -> tuple[dict, int]:
    try:
        dto = _paste_service().retrieve_paste_for_view(paste_id, now=resolve_now())
    except PasteNotFoundError as exc:
        return _error(str(exc), HTTPStatus.NOT_FOUND)

    return PasteViewResponse(**dto).model_dump(mode="json"), HTTPStatus.OK


@api_bp.errorhandler(SQLAlchemyError)
def handle_store_error(exc: SQLAlchemyError) -> tuple[dict, int]:
    logger.exception(
        "Database error while handling request",
        exc_info=exc,
        extra={
            "event": "store_error",
            "error_type": type(exc).__name__,
            "correlation_id": get_correlation_id(),
        },
    )
    return _error("Internal server error", HTTPStatus.INTERNAL_SERVER_ERROR)


@api_bp.app_errorhandler(HTTPException)
def handle_http_error(exc: HTTPException) -> tuple[dict, int]:
    """Render routing errors (unknown path, wrong method) as JSON."""
    return _error(exc.name, exc.code or HTTPStatus.INTERNAL_SERVER_ERROR)
