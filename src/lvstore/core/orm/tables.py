"""ORM tables backing :class:`~lvstore.core.repository.sql.SqlMetadataRepository`.

Every catalog entity lives in ``lv_entities`` as a JSON payload keyed by
``(kind, entity_id)``. The columns the repository filters on (parent id,
owning node, status) are copied out of the payload so they can be indexed.
"""

from __future__ import annotations

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from lvstore.core.orm.base import LVStoreBase, TimestampMixin


class EntityRow(TimestampMixin, LVStoreBase):
    __tablename__ = "lv_entities"

    kind: Mapped[str] = mapped_column(String(64), primary_key=True)
    entity_id: Mapped[int] = mapped_column(primary_key=True, autoincrement=False)
    parent_id: Mapped[int | None] = mapped_column(nullable=True)
    node_id: Mapped[int | None] = mapped_column(nullable=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payload: Mapped[dict] = mapped_column(nullable=False)

    __table_args__ = (
        Index("ix_lv_entities_parent", "kind", "parent_id"),
        Index("ix_lv_entities_node_status", "kind", "node_id", "status"),
    )


class SequenceRow(LVStoreBase):
    __tablename__ = "lv_sequences"

    kind: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_id: Mapped[int] = mapped_column(nullable=False, default=0)


__all__ = ["EntityRow", "SequenceRow"]
