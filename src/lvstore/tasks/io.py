"""Reading partitions and fragments, locally or from other nodes."""

from __future__ import annotations

from typing import Any

from lvstore.core.errors import StorageError
from lvstore.core.models import ColumnFile, ReplicaPartition
from lvstore.storage.column_file import (
    EXTENSION,
    ColumnData,
    column_file_path,
    decode_column_file,
    read_column_file,
)
from lvstore.storage.transport import ConnectionScope, FileArea
from lvstore.tasks.context import DataEngineContext


def read_node_column_file(
    context: DataEngineContext,
    connections: ConnectionScope,
    node_id: int,
    column_file: ColumnFile,
    area: FileArea = FileArea.ROOT,
) -> ColumnData:
    """Read one column file held by *node_id*; local files skip the transport."""
    if node_id == context.node_id:
        base = context.root_dir if area == FileArea.ROOT else context.tmp_dir
        return read_column_file(column_file_path(base, column_file.local_path))
    data = connections.get(node_id).read_bytes(f"{column_file.local_path}{EXTENSION}", area)
    return decode_column_file(data)


def read_partition_columns(
    context: DataEngineContext,
    connections: ConnectionScope,
    partition: ReplicaPartition,
    column_ids: list[int],
) -> dict[int, list[Any]]:
    """All requested columns of one partition, keyed by column id."""
    if partition.node_id is None:
        raise StorageError(f"partition {partition.partition_id} has no owning node")
    columns: dict[int, list[Any]] = {}
    for column_id in column_ids:
        cf = context.repository.get_column_file_by_partition_and_column(
            partition.partition_id, column_id,
        )
        if cf is None:
            raise StorageError(
                f"partition {partition.partition_id} has no column file for column {column_id}"
            ).with_context(partition_id=partition.partition_id)
        columns[column_id] = read_node_column_file(
            context, connections, partition.node_id, cf,
        ).values
    return columns


__all__ = ["read_node_column_file", "read_partition_columns"]
