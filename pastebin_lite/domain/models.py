from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, validates

from pastebin_lite.db import Base
from pastebin_lite.domain.state_machine import PasteAccessState, evaluate_access


class Paste(Base):
    """Paste entity persisted via SQLAlchemy."""

    __tablename__ = "pastes"
    __table_args__ = (
        CheckConstraint(
            "max_views IS NULL OR max_views >= 1",
            name="ck_pastes_max_views_min_1",
        ),
        CheckConstraint(
            "view_count >= 0",
            name="ck_pastes_view_count_non_negative",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    max_views: Mapped[int | None] = mapped_column(Integer, nullable=True)
    view_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    @validates("content")
    def _validate_immutable_content(self, key: str, value: str) -> str:
        """
        Enforce that ``content`` is immutable after initial creation.

        The value can be set on new instances, but any subsequent attempt to
        change it will raise an error.
        """

        if getattr(self, "content", None) is not None and self.content != value:
            raise ValueError("Paste content is immutable and cannot be modified.")
        return value

    def access_state(self, now: datetime) -> PasteAccessState:
        """Classify this paste as alive, expired or exhausted at ``now``."""

        return evaluate_access(
            expires_at=self.expires_at,
            max_views=self.max_views,
            view_count=self.view_count or 0,
            now=now,
        )
