"""In-process metadata repository.

Keeps JSON-safe payload dicts per entity kind. Reads decode a fresh entity
from the payload, so callers can never mutate stored state by accident.
Used by tests and by single-process deployments.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from typing import Any

from lvstore.core.repository.base import MetadataRepository


class InMemoryMetadataRepository(MetadataRepository):
    """Thread-safe dict-backed repository."""

    def __init__(self) -> None:
        super().__init__()
        self._rows: dict[str, dict[int, tuple[dict[str, Any], dict[str, Any]]]] = defaultdict(dict)
        self._sequences: dict[str, int] = defaultdict(int)

    def _load(self, kind: str, entity_id: int) -> dict[str, Any] | None:
        with self._lock:
            row = self._rows[kind].get(entity_id)
            return copy.deepcopy(row[0]) if row else None

    def _save(self, kind: str, entity_id: int, payload: dict[str, Any], index: dict[str, Any]) -> None:
        with self._lock:
            self._rows[kind][entity_id] = (copy.deepcopy(payload), dict(index))

    def _query(
        self,
        kind: str,
        *,
        parent_id: int | None = None,
        node_id: int | None = None,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        wanted = {
            k: v
            for k, v in {"parent_id": parent_id, "node_id": node_id, "status": status}.items()
            if v is not None
        }
        with self._lock:
            return [
                copy.deepcopy(payload)
                for _, (payload, index) in sorted(self._rows[kind].items())
                if all(index.get(k) == v for k, v in wanted.items())
            ]

    def _delete(self, kind: str, entity_id: int) -> bool:
        with self._lock:
            return self._rows[kind].pop(entity_id, None) is not None

    def _next_id(self, kind: str) -> int:
        with self._lock:
            self._sequences[kind] += 1
            return self._sequences[kind]
