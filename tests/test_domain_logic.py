from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from pastebin_lite.db import Base, build_engine
from pastebin_lite.domain.models import Paste
from pastebin_lite.domain.state_machine import (
    PasteAccessState,
    evaluate_access,
    remaining_views,
)
from pastebin_lite.repositories.paste_repository import PasteRepository
from pastebin_lite.services.paste_service import (
    InvalidPasteParameters,
    PasteNotFoundError,
    PasteService,
)


NOW = datetime(2027, 1, 15, 8, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="function")
def engine(tmp_path: Path) -> Generator:
    """
    Create a fresh file-backed SQLite engine for each test function.

    A file (rather than ``:memory:``) lets the service open its own sessions
    against the same database the test inspects.
    """

    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'pastes.sqlite3'}")
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture(scope="function")
def session(session_factory) -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session
        session.rollback()


@pytest.fixture
def paste_repo(session: Session) -> PasteRepository:
    return PasteRepository(session=session)


@pytest.fixture
def paste_service(session_factory) -> PasteService:
    """Service with its own session factory; each call gets a new session from the test engine."""
    return PasteService(session_factory=session_factory)


def _count_pastes(session_factory) -> int:
    with session_factory() as s:
        return len(s.execute(select(Paste)).scalars().all())


# ---------------------------------------------------------------------------
# Access state machine
# ---------------------------------------------------------------------------


def test_unlimited_paste_is_always_alive() -> None:
    far_future = NOW + timedelta(days=365 * 100)
    assert (
        evaluate_access(expires_at=None, max_views=None, view_count=10_000, now=far_future)
        is PasteAccessState.ALIVE
    )


def test_expiry_boundary_is_exclusive() -> None:
    expires_at = NOW + timedelta(seconds=10)

    just_before = evaluate_access(
        expires_at=expires_at,
        max_views=None,
        view_count=0,
        now=NOW + timedelta(milliseconds=9999),
    )
    at_expiry = evaluate_access(
        expires_at=expires_at,
        max_views=None,
        view_count=0,
        now=NOW + timedelta(milliseconds=10000),
    )

    assert just_before is PasteAccessState.ALIVE
    assert at_expiry is PasteAccessState.EXPIRED


def test_view_limit_reached_is_exhausted() -> None:
    assert (
        evaluate_access(expires_at=None, max_views=3, view_count=2, now=NOW)
        is PasteAccessState.ALIVE
    )
    assert (
        evaluate_access(expires_at=None, max_views=3, view_count=3, now=NOW)
        is PasteAccessState.EXHAUSTED
    )


def test_expiry_takes_precedence_over_exhaustion() -> None:
    state = evaluate_access(
        expires_at=NOW - timedelta(seconds=1),
        max_views=1,
        view_count=1,
        now=NOW,
    )
    assert state is PasteAccessState.EXPIRED


def test_naive_timestamps_are_treated_as_utc() -> None:
    naive_expiry = (NOW + timedelta(seconds=5)).replace(tzinfo=None)
    assert (
        evaluate_access(expires_at=naive_expiry, max_views=None, view_count=0, now=NOW)
        is PasteAccessState.ALIVE
    )


def test_remaining_views() -> None:
    assert remaining_views(None, 42) is None
    assert remaining_views(5, 2) == 3
    assert remaining_views(1, 1) == 0
    assert remaining_views(1, 7) == 0


# ---------------------------------------------------------------------------
# Model / repository
# ---------------------------------------------------------------------------


def test_paste_content_is_immutable(session: Session) -> None:
    paste = Paste(content="immutable content", created_at=NOW, view_count=0)
    session.add(paste)
    session.flush()

    # Attempting to modify content after initial creation should fail via validator.
    with pytest.raises(ValueError):
        paste.content = "new content"
        session.flush()


def test_consume_view_increments_until_limit(session: Session, paste_repo: PasteRepository) -> None:
    paste = paste_repo.create_paste(content="twice", created_at=NOW, max_views=2)
    session.commit()

    first = paste_repo.consume_view(paste.id, now=NOW)
    second = paste_repo.consume_view(paste.id, now=NOW)
    third = paste_repo.consume_view(paste.id, now=NOW)
    session.commit()

    assert first is not None and first.view_count == 1
    assert second is not None and second.view_count == 2
    assert third is None

    session.expire_all()
    refreshed = session.get(Paste, paste.id)
    assert refreshed is not None
    assert refreshed.view_count == 2
    assert refreshed.access_state(NOW) is PasteAccessState.EXHAUSTED


def test_consume_view_skips_expired_paste(session: Session, paste_repo: PasteRepository) -> None:
    paste = paste_repo.create_paste(
        content="gone soon",
        created_at=NOW,
        expires_at=NOW + timedelta(seconds=1),
    )
    session.commit()

    assert paste_repo.consume_view(paste.id, now=NOW + timedelta(seconds=1)) is None

    session.expire_all()
    refreshed = session.get(Paste, paste.id)
    assert refreshed is not None
    assert refreshed.view_count == 0


def test_consume_view_unknown_id(paste_repo: PasteRepository) -> None:
    assert paste_repo.consume_view(uuid.uuid4(), now=NOW) is None


# ---------------------------------------------------------------------------
# Creation handler
# ---------------------------------------------------------------------------


def test_create_paste_persists_expiry_from_ttl(paste_service: PasteService, session_factory) -> None:
    dto = paste_service.create_paste(content="  hello  ", ttl_seconds=10, max_views=3, now=NOW)

    with session_factory() as s:
        paste = s.get(Paste, uuid.UUID(dto["id"]))
        assert paste is not None
        assert paste.content == "  hello  "
        assert paste.max_views == 3
        assert paste.view_count == 0
        assert paste.expires_at is not None
        assert paste.expires_at.replace(tzinfo=timezone.utc) == NOW + timedelta(seconds=10)


def test_create_paste_without_limits(paste_service: PasteService, session_factory) -> None:
    dto = paste_service.create_paste(content="forever", now=NOW)

    with session_factory() as s:
        paste = s.get(Paste, uuid.UUID(dto["id"]))
        assert paste is not None
        assert paste.expires_at is None
        assert paste.max_views is None


@pytest.mark.parametrize(
    ("kwargs", "field"),
    [
        ({"content": ""}, "content"),
        ({"content": "   \n\t"}, "content"),
        ({"content": None}, "content"),
        ({"content": "ok", "ttl_seconds": 0}, "ttl_seconds"),
        ({"content": "ok", "ttl_seconds": -5}, "ttl_seconds"),
        ({"content": "ok", "ttl_seconds": 3.5}, "ttl_seconds"),
        ({"content": "ok", "ttl_seconds": True}, "ttl_seconds"),
        ({"content": "ok", "ttl_seconds": 10**18}, "ttl_seconds"),
        ({"content": "ok", "max_views": 0}, "max_views"),
        ({"content": "ok", "max_views": "2"}, "max_views"),
        ({"content": "ok", "max_views": 2**31}, "max_views"),
        ({"content": "ok", "max_views": 2**63}, "max_views"),
    ],
)
def test_create_paste_rejects_invalid_parameters(
    paste_service: PasteService,
    session_factory,
    kwargs: dict,
    field: str,
) -> None:
    with pytest.raises(InvalidPasteParameters) as excinfo:
        paste_service.create_paste(now=NOW, **kwargs)

    assert excinfo.value.field == field
    assert _count_pastes(session_factory) == 0


def test_create_paste_accepts_whole_number_floats(paste_service: PasteService, session_factory) -> None:
    dto = paste_service.create_paste(content="ok", ttl_seconds=10.0, max_views=1e1, now=NOW)

    with session_factory() as s:
        paste = s.get(Paste, uuid.UUID(dto["id"]))
        assert paste is not None
        assert paste.max_views == 10
        assert paste.expires_at is not None
        assert paste.expires_at.replace(tzinfo=timezone.utc) == NOW + timedelta(seconds=10)


def test_create_paste_rejects_oversized_content(session_factory) -> None:
    service = PasteService(session_factory=session_factory, max_content_bytes=4)

    with pytest.raises(InvalidPasteParameters) as excinfo:
        service.create_paste(content="ééé", now=NOW)

    assert excinfo.value.field == "content"
    assert _count_pastes(session_factory) == 0


# ---------------------------------------------------------------------------
# Access controller
# ---------------------------------------------------------------------------


def test_single_view_paste_is_readable_once(paste_service: PasteService) -> None:
    dto = paste_service.create_paste(content="once only", max_views=1, now=NOW)

    viewed = paste_service.retrieve_paste_for_view(dto["id"], now=NOW)
    assert viewed == {"content": "once only", "remaining_views": 0, "expires_at": None}

    with pytest.raises(PasteNotFoundError):
        paste_service.retrieve_paste_for_view(dto["id"], now=NOW)


def test_unlimited_paste_never_reports_remaining_views(paste_service: PasteService) -> None:
    dto = paste_service.create_paste(content="forever", now=NOW)

    for day in range(5):
        viewed = paste_service.retrieve_paste_for_view(
            dto["id"],
            now=NOW + timedelta(days=365 * day),
        )
        assert viewed["remaining_views"] is None
        assert viewed["content"] == "forever"


def test_remaining_views_count_down(paste_service: PasteService) -> None:
    dto = paste_service.create_paste(content="three", max_views=3, now=NOW)

    seen = [
        paste_service.retrieve_paste_for_view(dto["id"], now=NOW)["remaining_views"]
        for _ in range(3)
    ]
    assert seen == [2, 1, 0]


def test_ttl_expiry_boundary(paste_service: PasteService) -> None:
    dto = paste_service.create_paste(content="ten seconds", ttl_seconds=10, now=NOW)

    viewed = paste_service.retrieve_paste_for_view(
        dto["id"],
        now=NOW + timedelta(milliseconds=9999),
    )
    assert viewed["expires_at"] == NOW + timedelta(seconds=10)

    with pytest.raises(PasteNotFoundError):
        paste_service.retrieve_paste_for_view(dto["id"], now=NOW + timedelta(seconds=10))


def test_denied_access_does_not_spend_views(paste_service: PasteService, session_factory) -> None:
    dto = paste_service.create_paste(content="x", ttl_seconds=1, max_views=5, now=NOW)

    for _ in range(3):
        with pytest.raises(PasteNotFoundError):
            paste_service.retrieve_paste_for_view(dto["id"], now=NOW + timedelta(seconds=2))

    with session_factory() as s:
        paste = s.get(Paste, uuid.UUID(dto["id"]))
        assert paste is not None
        assert paste.view_count == 0


def test_not_found_is_uniform(paste_service: PasteService) -> None:
    expired = paste_service.create_paste(content="a", ttl_seconds=1, now=NOW)
    exhausted = paste_service.create_paste(content="b", max_views=1, now=NOW)
    paste_service.retrieve_paste_for_view(exhausted["id"], now=NOW)

    messages = set()
    for paste_id in (expired["id"], exhausted["id"], str(uuid.uuid4()), "not-a-uuid"):
        with pytest.raises(PasteNotFoundError) as excinfo:
            paste_service.retrieve_paste_for_view(paste_id, now=NOW + timedelta(seconds=5))
        messages.add(str(excinfo.value))

    assert messages == {"Paste not found"}


def test_store_errors_are_not_masked(tmp_path: Path) -> None:
    # No tables created: every query fails at the database level.
    bare_engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'empty.sqlite3'}")
    service = PasteService(session_factory=sessionmaker(bind=bare_engine, future=True))
    try:
        with pytest.raises(OperationalError):
            service.retrieve_paste_for_view(uuid.uuid4(), now=NOW)
    finally:
        bare_engine.dispose()
