"""SQLite engine and session helpers for a single store file.

Usage
-----
from bankrec.db.client import create_sqlite_engine, make_session_factory, session_scope

engine = create_sqlite_engine(path)
factory = make_session_factory(engine)
with session_scope(factory) as s:
    s.execute(...)

Engines are created per store and owned by :class:`bankrec.store.EncryptedStore`;
nothing here is cached at module level.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


def sqlite_url(path: str | os.PathLike[str]) -> str:
    return f"sqlite+pysqlite:///{Path(path)}"


def create_sqlite_engine(path: str | os.PathLike[str]) -> Engine:
    """Return an engine for ``path`` with WAL journaling and foreign keys on."""

    engine = create_engine(sqlite_url(path))

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _record):  # pragma: no cover - tiny bridge
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False, class_=Session)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = [
    "create_sqlite_engine",
    "make_session_factory",
    "session_scope",
    "sqlite_url",
]
