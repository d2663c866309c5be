"""SQLAlchemy ORM layer for the durable metadata repository."""

from lvstore.core.orm.base import LVStoreBase
from lvstore.core.orm.session import (
    LVStoreSession,
    create_lvstore_engine,
    lvstore_session_factory,
)
from lvstore.core.orm.tables import EntityRow, SequenceRow

__all__ = [
    "LVStoreBase",
    "LVStoreSession",
    "create_lvstore_engine",
    "lvstore_session_factory",
    "EntityRow",
    "SequenceRow",
]
