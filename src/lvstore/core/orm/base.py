"""Declarative base for the lvstore ORM tables.

Uses SQLAlchemy 2.0 ``DeclarativeBase``. Entity payloads are JSON, so the
type map only needs the scalar columns the repository indexes on.
"""

from __future__ import annotations

import datetime

from sqlalchemy import JSON, DateTime, Integer, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class LVStoreBase(DeclarativeBase):
    """Shared declarative base for every lvstore table.

    * ``str``  → ``Text``
    * ``int``  → ``Integer``
    * ``dict`` → ``JSON`` (TEXT in SQLite, native JSON elsewhere)
    """

    type_annotation_map = {
        str: Text,
        int: Integer,
        dict: JSON,
    }


class TimestampMixin:
    """``updated_at`` maintained on every write of the row."""

    updated_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime,
        nullable=True,
        server_default=func.now(),
        onupdate=func.now(),
    )
