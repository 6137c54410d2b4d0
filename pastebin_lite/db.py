from __future__ import annotations

import typing as t

from flask import Flask
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, scoped_session, sessionmaker


Base = declarative_base()

_engine: Engine | None = None
SessionLocal: scoped_session = scoped_session(
    sessionmaker(autocommit=False, autoflush=False)
)


def get_engine() -> Engine:
    """
    Return the global SQLAlchemy engine.

    This expects that ``init_db(app)`` has been called during application
    startup to configure the engine from Flask config.
    """
    if _engine is None:  # type: ignore[truthy-function]
        raise RuntimeError("Database engine is not initialized. Call init_db(app) first.")
    return t.cast(Engine, _engine)


def build_engine(database_uri: str, *, echo: bool = False, future: bool = True) -> Engine:
    """Create an engine, letting SQLite connections be shared across threads."""

    connect_args: dict[str, t.Any] = {}
    if make_url(database_uri).get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
    return create_engine(
        database_uri,
        future=future,
        echo=echo,
        connect_args=connect_args,
    )


def ping(engine: Engine | None = None) -> None:
    """Run a trivial query; raises ``SQLAlchemyError`` if the store is unreachable."""

    with (engine or get_engine()).connect() as connection:
        connection.execute(text("SELECT 1"))


def init_db(app: Flask) -> None:
    """
    Initialize the SQLAlchemy engine and session factory for the Flask app.

    Reads the database URL from ``app.config['SQLALCHEMY_DATABASE_URI']``.
    """
    global _engine

    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    if not database_uri:
        raise RuntimeError(
            "SQLALCHEMY_DATABASE_URI is not configured on the Flask app."
        )

    _engine = build_engine(
        database_uri,
        future=app.config.get("SQLALCHEMY_FUTURE", True),
        echo=app.config.get("SQLALCHEMY_ECHO", False),
    )
    # Drop any session still bound to a previous engine.
    SessionLocal.remove()
    SessionLocal.configure(bind=_engine)

    if app.config.get("CREATE_TABLES_ON_STARTUP", False):
        # Register models on the metadata before creating tables.
        from pastebin_lite.domain import models as _models  # noqa: F401

        Base.metadata.create_all(_engine)

    @app.teardown_appcontext
    def remove_session(_exc: BaseException | None) -> None:  # type: ignore[unused-variable]
        """Remove the scoped session at the end of the request."""

        SessionLocal.remove()
