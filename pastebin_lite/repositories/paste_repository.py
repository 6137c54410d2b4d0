from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import Select, Update, or_, select, update
from sqlalchemy.orm import Session

from pastebin_lite.domain.models import Paste


@dataclass(frozen=True)
class ConsumedView:
    """Snapshot of a paste taken by the update that spent one of its views."""

    id: uuid.UUID
    content: str
    expires_at: Optional[datetime]
    max_views: Optional[int]
    view_count: int


class PasteRepository:
    """
    Repository for Paste aggregates.

    All database interaction for Paste should go through this class.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def create_paste(
        self,
        *,
        content: str,
        created_at: datetime,
        expires_at: Optional[datetime] = None,
        max_views: Optional[int] = None,
    ) -> Paste:
        """
        Create and persist a new Paste.

        Note: Paste content is set only at creation time and is not exposed
        for updates via this repository.
        """

        paste = Paste(
            content=content,
            created_at=created_at,
            expires_at=expires_at,
            max_views=max_views,
            view_count=0,
        )
        self._session.add(paste)
        # Flush so that generated primary key and defaults are populated.
        self._session.flush()
        return paste

    def get_paste_by_id(self, paste_id: uuid.UUID) -> Optional[Paste]:
        """Return a Paste by its id, or ``None`` if not found."""

        stmt: Select[tuple[Paste]] = select(Paste).where(Paste.id == paste_id)
        return self._session.execute(stmt).scalar_one_or_none()

    def consume_view(self, paste_id: uuid.UUID, *, now: datetime) -> Optional[ConsumedView]:
        """
        Atomically spend one view of a Paste that is alive at ``now``.

        The liveness check and the increment are a single conditional
        ``UPDATE``, so concurrent callers can never push ``view_count`` past
        ``max_views``. Returns ``None`` when the paste is missing, expired or
        exhausted; nothing is written in that case.
        """

        stmt: Update = (
            update(Paste)
            .where(
                Paste.id == paste_id,
                or_(Paste.expires_at.is_(None), Paste.expires_at > now),
                or_(Paste.max_views.is_(None), Paste.view_count < Paste.max_views),
            )
            .values(view_count=Paste.view_count + 1)
            .returning(
                Paste.id,
                Paste.content,
                Paste.expires_at,
                Paste.max_views,
                Paste.view_count,
            )
            .execution_options(synchronize_session=False)
        )
        row = self._session.execute(stmt).one_or_none()
        if row is None:
            return None

        return ConsumedView(
            id=row.id,
            content=row.content,
            expires_at=row.expires_at,
            max_views=row.max_views,
            view_count=int(row.view_count),
        )
