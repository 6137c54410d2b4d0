from __future__ import annotations

import enum
from datetime import datetime, timezone


class PasteAccessState(str, enum.Enum):
    ALIVE = "ALIVE"
    EXPIRED = "EXPIRED"
    EXHAUSTED = "EXHAUSTED"


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to UTC; naive values are assumed to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def evaluate_access(
    *,
    expires_at: datetime | None,
    max_views: int | None,
    view_count: int,
    now: datetime,
) -> PasteAccessState:
    """
    Decide whether a paste may be served at ``now``.

    - ``EXPIRED`` once ``now`` reaches ``expires_at``.
    - ``EXHAUSTED`` once ``view_count`` reaches ``max_views``.
    - ``ALIVE`` otherwise.

    Time is checked before views. Neither state can revert to ``ALIVE``:
    time only moves forward and ``view_count`` never decreases.
    """

    if expires_at is not None and as_utc(now) >= as_utc(expires_at):
        return PasteAccessState.EXPIRED

    if max_views is not None and view_count >= max_views:
        return PasteAccessState.EXHAUSTED

    return PasteAccessState.ALIVE


def remaining_views(max_views: int | None, view_count: int) -> int | None:
    """Views left after ``view_count`` have been spent; ``None`` means unlimited."""
    if max_views is None:
        return None
    return max(max_views - view_count, 0)
