"""SQLAlchemy-backed metadata repository.

Each primitive runs in its own short transaction under the repository lock,
so one connection can be shared between threads. Read-modify-write
sequences are serialized in-process by the base class lock, which matches
the deployment model of one controller process per metadata database.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.engine import Engine

from lvstore.core.orm.base import LVStoreBase
from lvstore.core.orm.session import create_lvstore_engine, lvstore_session_factory
from lvstore.core.orm.tables import EntityRow, SequenceRow
from lvstore.core.repository.base import MetadataRepository


class SqlMetadataRepository(MetadataRepository):
    """Repository persisted in any SQLAlchemy-supported database."""

    def __init__(self, url: str | None = None, *, engine: Engine | None = None) -> None:
        super().__init__()
        if engine is None:
            if url is None:
                raise ValueError("Either url or engine must be provided")
            engine = create_lvstore_engine(url)
            self._owns_engine = True
        else:
            self._owns_engine = False
        self._engine = engine
        self._sessions = lvstore_session_factory(engine)
        LVStoreBase.metadata.create_all(engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    def close(self) -> None:
        if self._owns_engine:
            self._engine.dispose()

    def _load(self, kind: str, entity_id: int) -> dict[str, Any] | None:
        with self._lock, self._sessions() as session:
            row = session.get(EntityRow, (kind, entity_id))
            return dict(row.payload) if row is not None else None

    def _save(self, kind: str, entity_id: int, payload: dict[str, Any], index: dict[str, Any]) -> None:
        with self._lock, self._sessions.begin() as session:
            row = session.get(EntityRow, (kind, entity_id))
            if row is None:
                row = EntityRow(kind=kind, entity_id=entity_id)
                session.add(row)
            row.payload = payload
            row.parent_id = index.get("parent_id")
            row.node_id = index.get("node_id")
            row.status = index.get("status")

    def _query(
        self,
        kind: str,
        *,
        parent_id: int | None = None,
        node_id: int | None = None,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        stmt = select(EntityRow).where(EntityRow.kind == kind)
        if parent_id is not None:
            stmt = stmt.where(EntityRow.parent_id == parent_id)
        if node_id is not None:
            stmt = stmt.where(EntityRow.node_id == node_id)
        if status is not None:
            stmt = stmt.where(EntityRow.status == status)
        stmt = stmt.order_by(EntityRow.entity_id)
        with self._lock, self._sessions() as session:
            return [dict(row.payload) for row in session.scalars(stmt)]

    def _delete(self, kind: str, entity_id: int) -> bool:
        with self._lock, self._sessions.begin() as session:
            row = session.get(EntityRow, (kind, entity_id))
            if row is None:
                return False
            session.delete(row)
            return True

    def _next_id(self, kind: str) -> int:
        with self._lock, self._sessions.begin() as session:
            seq = session.get(SequenceRow, kind)
            if seq is None:
                seq = SequenceRow(kind=kind, last_id=0)
                session.add(seq)
            seq.last_id += 1
            return seq.last_id
