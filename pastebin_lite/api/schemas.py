from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, StrictInt, StrictStr, field_validator

from pastebin_lite.services.paste_service import coerce_whole_number


class PasteCreateRequest(BaseModel):
    """
    Shape of a create request.

    Only JSON types are checked here; blank content and out-of-range limits
    are business rules enforced by ``PasteService.create_paste``.
    """

    content: StrictStr = Field(..., description="Paste content")
    ttl_seconds: Optional[StrictInt] = Field(
        default=None,
        description="Optional time-to-live in seconds (>= 1)",
    )
    max_views: Optional[StrictInt] = Field(
        default=None,
        description="Optional maximum allowed views (>= 1)",
    )

    # Omitting a limit is fine; sending an explicit null is not.
    @field_validator("ttl_seconds", "max_views", mode="before")
    @classmethod
    def _whole_number(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("must be an integer >= 1")
        return coerce_whole_number(value)


class PasteCreatedResponse(BaseModel):
    id: str
    url: str


class PasteViewResponse(BaseModel):
    content: str
    remaining_views: Optional[int]
    expires_at: Optional[datetime]


class ErrorResponse(BaseModel):
    error: str
    field: Optional[str] = None


class HealthResponse(BaseModel):
    status: str = "ok"
