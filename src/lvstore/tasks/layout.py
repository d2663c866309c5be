"""Everything a runner needs to know about one replica's physical layout."""

from __future__ import annotations

from dataclasses import dataclass

from lvstore.core.models import (
    Column,
    ColumnType,
    CompressionType,
    Fracture,
    Replica,
    ReplicaGroup,
    ReplicaPartition,
    ReplicaScheme,
)
from lvstore.core.repository import MetadataRepository


@dataclass
class ReplicaLayout:
    replica: Replica
    scheme: ReplicaScheme
    group: ReplicaGroup
    fracture: Fracture
    columns: list[Column]

    @classmethod
    def load(cls, repository: MetadataRepository, replica_id: int) -> ReplicaLayout:
        replica = repository.get_replica(replica_id)
        scheme = repository.get_replica_scheme(replica.scheme_id)
        group = repository.get_replica_group(scheme.group_id)
        fracture = repository.get_fracture(replica.fracture_id)
        columns = repository.get_all_columns_by_table(fracture.table_id)
        return cls(replica, scheme, group, fracture, columns)

    @property
    def column_ids(self) -> list[int]:
        return [c.column_id for c in self.columns]

    @property
    def column_types(self) -> dict[int, ColumnType]:
        return {c.column_id: c.column_type for c in self.columns}

    @property
    def compressions(self) -> dict[int, CompressionType]:
        return {c.column_id: self.scheme.compression_of(c.column_id) for c in self.columns}

    @property
    def sort_column_id(self) -> int | None:
        return self.scheme.sort_column_id

    def partitions(self, repository: MetadataRepository) -> list[ReplicaPartition]:
        return repository.get_all_replica_partitions_by_replica(self.replica.replica_id)


__all__ = ["ReplicaLayout"]
