from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from pastebin_lite.domain.state_machine import as_utc, remaining_views
from pastebin_lite.observability import get_correlation_id
from pastebin_lite.repositories.paste_repository import PasteRepository


logger = logging.getLogger(__name__)


NOT_FOUND_MESSAGE = "Paste not found"

MAX_CONTENT_BYTES = 512 * 1024  # 512 KiB

# Largest value the INTEGER ``max_views`` column holds on every backend.
MAX_VIEWS_LIMIT = 2**31 - 1

FIELD_ERRORS = {
    "content": "content must be a non-empty string",
    "ttl_seconds": "ttl_seconds must be an integer >= 1",
    "max_views": "max_views must be an integer >= 1",
}


class PasteError(Exception):
    """Base class for paste-related errors."""


class InvalidPasteParameters(PasteError):
    """Raised when creating a paste with invalid parameters."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class PasteNotFoundError(PasteError):
    """
    Raised when a paste cannot be served.

    Missing, expired and view-exhausted pastes all raise this with the same
    message so callers cannot tell them apart.
    """

    def __init__(self) -> None:
        super().__init__(NOT_FOUND_MESSAGE)


def coerce_whole_number(value: Any) -> Any:
    """Turn integral floats (``10.0``, ``1e1``) into ints; anything else is returned unchanged."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _positive_int(value: Any) -> Optional[int]:
    value = coerce_whole_number(value)
    if isinstance(value, int) and not isinstance(value, bool) and value >= 1:
        return value
    return None


@dataclass
class PasteService:
    """
    Application service coordinating paste-related use cases.

    Owns session lifecycle: creates a session per use case, commits on success,
    rolls back on exception, and closes the session in a finally block.
    Returns plain dict DTOs; no ORM entities escape this layer.

    The service never reads the clock; every use case takes ``now``.
    """

    session_factory: Callable[[], Session]
    max_content_bytes: int = MAX_CONTENT_BYTES

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------
    def _reject(self, field: str, message: str) -> InvalidPasteParameters:
        logger.warning(
            "Invalid %s when creating paste",
            field,
            extra={
                "event": "paste_create_invalid_parameters",
                "reason": field,
                "correlation_id": get_correlation_id(),
            },
        )
        return InvalidPasteParameters(field, message)

    def create_paste(
        self,
        *,
        content: Any,
        now: datetime,
        ttl_seconds: Optional[int] = None,
        max_views: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        Create a new paste enforcing business rules:

        - ``content`` must be a string that is not blank once trimmed, and at
          most ``max_content_bytes`` when UTF-8 encoded
        - ``ttl_seconds`` (if provided) must be an integer >= 1
        - ``max_views`` (if provided) must be an integer >= 1

        Returns ``{"id": ...}``; the stored content is left untrimmed.
        """
        if not isinstance(content, str) or not content.strip():
            raise self._reject("content", FIELD_ERRORS["content"])

        if len(content.encode("utf-8")) > self.max_content_bytes:
            raise self._reject(
                "content",
                f"content must be at most {self.max_content_bytes} bytes when UTF-8 encoded",
            )

        if ttl_seconds is not None:
            ttl_seconds = _positive_int(ttl_seconds)
            if ttl_seconds is None:
                raise self._reject("ttl_seconds", FIELD_ERRORS["ttl_seconds"])

        if max_views is not None:
            max_views = _positive_int(max_views)
            if max_views is None:
                raise self._reject("max_views", FIELD_ERRORS["max_views"])
            if max_views > MAX_VIEWS_LIMIT:
                raise self._reject("max_views", f"max_views must be at most {MAX_VIEWS_LIMIT}")

        created_at = as_utc(now)
        expires_at = None
        if ttl_seconds is not None:
            try:
                expires_at = created_at + timedelta(seconds=ttl_seconds)
            except OverflowError:
                raise self._reject("ttl_seconds", "ttl_seconds is too large") from None

        session = self.session_factory()
        try:
            paste_repo = PasteRepository(session=session)
            paste = paste_repo.create_paste(
                content=content,
                created_at=created_at,
                expires_at=expires_at,
                max_views=max_views,
            )
            paste_id = paste.id
            session.commit()
            logger.info(
                "Paste created",
                extra={
                    "event": "paste_created",
                    "paste_id": str(paste_id),
                    "correlation_id": get_correlation_id(),
                },
            )
            return {"id": str(paste_id)}
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Retrieval / viewing
    # -------------------------------------------------------------------------
    def retrieve_paste_for_view(
        self,
        paste_id: uuid.UUID | str,
        *,
        now: datetime,
    ) -> dict[str, Any]:
        """
        Retrieve a paste for viewing, spending exactly one view on success.

        The paste must exist, must not have reached ``expires_at`` and must
        have views left. Any failure raises ``PasteNotFoundError``; the cause
        is only logged. Store errors propagate unchanged.
        """
        if not isinstance(paste_id, uuid.UUID):
            try:
                paste_id = uuid.UUID(str(paste_id))
            except ValueError:
                self._log_denied(str(paste_id), "malformed_id")
                raise PasteNotFoundError() from None

        now_utc = as_utc(now)

        session = self.session_factory()
        try:
            paste_repo = PasteRepository(session=session)

            consumed = paste_repo.consume_view(paste_id, now=now_utc)
            if consumed is None:
                paste = paste_repo.get_paste_by_id(paste_id)
                reason = "missing" if paste is None else paste.access_state(now_utc).value
                session.rollback()
                self._log_denied(str(paste_id), reason)
                raise PasteNotFoundError()

            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info(
            "Paste access successful",
            extra={
                "event": "paste_access_success",
                "paste_id": str(consumed.id),
                "correlation_id": get_correlation_id(),
            },
        )
        return {
            "content": consumed.content,
            "remaining_views": remaining_views(consumed.max_views, consumed.view_count),
            "expires_at": as_utc(consumed.expires_at) if consumed.expires_at else None,
        }

    @staticmethod
    def _log_denied(paste_id: str, reason: str) -> None:
        logger.info(
            "Paste access denied",
            extra={
                "event": "paste_access_denied",
                "paste_id": paste_id,
                "reason": reason,
                "correlation_id": get_correlation_id(),
            },
        )
