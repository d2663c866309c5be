"""Repartition manifests.

A repartitioning node publishes one manifest describing the fragments it
wrote: for each target range, one fragment descriptor per output column, or
``None`` when it produced no rows for that range. A manifest is written
once, is never modified afterwards, and becomes visible atomically: it is
written under a temporary name and then hard-linked to its final name,
which fails if a manifest already exists there.

Recovering nodes read every node's manifest and combine them with
:class:`RepartitionSummarySet`.
"""

from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from lvstore.core.errors import ManifestError
from lvstore.core.models import ColumnFile
from lvstore.storage.repartitioner import FragmentGrid

SUMMARY_FILE_NAME = "summary"


@dataclass
class RepartitionSummary:
    node_id: int
    column_ids: list[int]
    fragments: FragmentGrid = field(default_factory=list)

    def to_json(self) -> bytes:
        return json.dumps(
            {
                "node_id": self.node_id,
                "column_ids": self.column_ids,
                "fragments": [
                    [cf.to_dict() if cf is not None else None for cf in row]
                    for row in self.fragments
                ],
            },
            separators=(",", ":"),
        ).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes) -> RepartitionSummary:
        try:
            obj = json.loads(data.decode("utf-8"))
            return cls(
                node_id=obj["node_id"],
                column_ids=list(obj["column_ids"]),
                fragments=[
                    [ColumnFile.from_dict(cf) if cf is not None else None for cf in row]
                    for row in obj["fragments"]
                ],
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise ManifestError("corrupt repartition manifest", cause=exc) from exc

    def fragments_for(self, range_index: int) -> list[ColumnFile | None]:
        """Fragments for one range; ranges past the grid count as empty."""
        if range_index >= len(self.fragments):
            return [None] * len(self.column_ids)
        return self.fragments[range_index]


def publish_summary(summary: RepartitionSummary, path: Path) -> None:
    """Write *summary* to *path* exactly once; fail if *path* already exists."""
    path = Path(path)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "wb") as f:
            f.write(summary.to_json())
            f.flush()
            os.fsync(f.fileno())
        os.link(tmp, path)
    except FileExistsError as exc:
        raise ManifestError(f"repartition manifest {path} is already published", cause=exc) from exc
    except OSError as exc:
        raise ManifestError(f"cannot publish repartition manifest {path}", cause=exc) from exc
    finally:
        tmp.unlink(missing_ok=True)


def read_summary(path: Path) -> RepartitionSummary:
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise ManifestError(f"cannot read repartition manifest {path}", cause=exc) from exc
    return RepartitionSummary.from_json(data)


class RepartitionSummarySet:
    """Manifests of every repartitioning node, keyed by node id."""

    def __init__(self, summaries: dict[int, RepartitionSummary]):
        self.summaries = dict(sorted(summaries.items()))
        column_sets = {tuple(s.column_ids) for s in self.summaries.values()}
        if len(column_sets) > 1:
            raise ManifestError(f"manifests disagree on output columns: {sorted(column_sets)}")
        self.column_ids: list[int] = list(next(iter(column_sets))) if column_sets else []

    def fragments_for(self, range_index: int) -> list[tuple[int, dict[int, ColumnFile]]]:
        """(node id, column id → fragment) for every node holding rows of the range."""
        found = []
        for node_id, summary in self.summaries.items():
            row = summary.fragments_for(range_index)
            if all(cf is None for cf in row):
                continue
            if any(cf is None for cf in row):
                raise ManifestError(
                    f"node {node_id} manifest lists only some columns for range {range_index}"
                )
            found.append((node_id, {cid: cf for cid, cf in zip(summary.column_ids, row)}))
        return found

    def __len__(self) -> int:
        return len(self.summaries)

    def to_dict(self) -> dict[str, Any]:
        return {str(node): json.loads(s.to_json()) for node, s in self.summaries.items()}


__all__ = [
    "SUMMARY_FILE_NAME",
    "RepartitionSummary",
    "publish_summary",
    "read_summary",
    "RepartitionSummarySet",
]
