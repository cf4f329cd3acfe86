"""Engine and session helpers for the ledger database.

Usage
-----
from db.client import init_schema, session_scope

init_schema(database_url="sqlite+pysqlite:///ledger.sqlite")
with session_scope() as s:
    s.execute(...)

Engines are created lazily and cached per URL. Without an explicit URL the
``DATABASE_URL`` environment variable is used.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

_ENGINES: dict[str, tuple[Engine, sessionmaker[Session]]] = {}


def _resolve_url(override: str | None = None) -> str:
    url = override or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("No database URL given and DATABASE_URL is not set")
    return url


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Turn on FK enforcement and let SQLAlchemy emit BEGIN itself.

    pysqlite otherwise opens transactions lazily, which breaks SAVEPOINT
    rollback inside ``Session.begin_nested()``.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _record):  # pragma: no cover
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):  # pragma: no cover
        conn.exec_driver_sql("BEGIN")


def _entry(database_url: str | None) -> tuple[Engine, sessionmaker[Session]]:
    url = _resolve_url(database_url)
    entry = _ENGINES.get(url)
    if entry is None:
        engine = create_engine(url, pool_pre_ping=True)
        if engine.dialect.name == "sqlite":
            _enable_sqlite_savepoints(engine)
        entry = (engine, sessionmaker(bind=engine, expire_on_commit=False, class_=Session))
        _ENGINES[url] = entry
    return entry


def get_engine(*, database_url: str | None = None) -> Engine:
    """Return the cached engine for ``database_url``, creating it on first use."""

    return _entry(database_url)[0]


def get_session(*, database_url: str | None = None) -> Session:
    return _entry(database_url)[1]()


def reset_engine() -> None:
    """Dispose every cached engine."""

    while _ENGINES:
        _, (engine, _maker) = _ENGINES.popitem()
        engine.dispose()


@contextmanager
def session_scope(*, database_url: str | None = None) -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on error."""

    session = get_session(database_url=database_url)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_schema(*, database_url: str | None = None) -> None:
    """Create any missing ledger tables."""

    from .models.finance import Base

    Base.metadata.create_all(bind=get_engine(database_url=database_url))


__all__ = [
    "get_engine",
    "get_session",
    "init_schema",
    "reset_engine",
    "session_scope",
]
