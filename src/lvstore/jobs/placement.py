"""Choosing the node that rebuilds a partition."""

from __future__ import annotations

from collections import Counter
from typing import Iterable

from lvstore.core.errors import RecoveryError
from lvstore.core.repository import MetadataRepository


class NodePlacer:
    """Spreads unowned partitions over the nodes of the racks a group owns.

    Nodes are handed out least-loaded first (ties broken by node id), where
    load counts the partitions already placed through this placer.
    """

    def __init__(self, repository: MetadataRepository, fracture_id: int, group_id: int):
        self._load: Counter[int] = Counter()
        self._candidates: list[int] = []
        for assignment in repository.get_rack_assignments_by_fracture(fracture_id):
            if assignment.group_id != group_id:
                continue
            self._candidates.extend(
                n.node_id for n in repository.get_all_rack_nodes_by_rack(assignment.rack_id)
            )
        if not self._candidates:
            self._candidates = [n.node_id for n in repository.get_all_rack_nodes()]

    def place(self, preferred: int | None = None) -> int:
        if preferred is not None:
            self._load[preferred] += 1
            return preferred
        if not self._candidates:
            raise RecoveryError("no storage node is available to hold the partition")
        node_id = min(sorted(self._candidates), key=lambda n: self._load[n])
        self._load[node_id] += 1
        return node_id


def most_common_node(node_ids: Iterable[int | None]) -> int | None:
    """Node holding most of the given partitions (lowest id on ties)."""
    counts = Counter(n for n in node_ids if n is not None)
    if not counts:
        return None
    return min(counts, key=lambda n: (-counts[n], n))


__all__ = ["NodePlacer", "most_common_node"]
