"""SQLAlchemy engine factory and session factory.

This module provides:

* ``create_lvstore_engine``   -- Create a SA engine from a URL.
* ``LVStoreSession``          -- A pre-configured ``Session`` subclass.
* ``lvstore_session_factory`` -- ``sessionmaker`` producing ``LVStoreSession``.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


def create_lvstore_engine(
    url: str = "sqlite:///lvstore.db",
    *,
    echo: bool = False,
    **kwargs: Any,
) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    Parameters
    ----------
    url:
        Database URL (``sqlite:///…``, ``postgresql://…``, etc.)
    echo:
        If ``True``, log all SQL to stdout.
    **kwargs:
        Extra arguments forwarded to ``sqlalchemy.create_engine``.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        in_memory = url in ("sqlite://", "sqlite:///:memory:")
        if in_memory:
            # one shared connection, otherwise every thread sees an empty database
            kwargs.setdefault("poolclass", StaticPool)

        engine = _sa_create_engine(url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            if not in_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return _sa_create_engine(url, echo=echo, **kwargs)


class LVStoreSession(Session):
    """Pre-configured session with ``expire_on_commit=False``."""

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def lvstore_session_factory(engine: Engine) -> sessionmaker[LVStoreSession]:
    """Return a ``sessionmaker`` bound to *engine* that produces ``LVStoreSession`` instances."""
    return sessionmaker(bind=engine, class_=LVStoreSession)
