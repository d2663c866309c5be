"""Split partitions into fragments along another group's ranges.

The repartitioner reads the rows of one or more source partitions and
buckets each row by the value of the target partitioning column, using a
binary search over the target ranges. Every non-empty bucket is written as
one fragment column file per output column under
``<output_dir>/<range_index>/<column_id>.lvc``. Fragments are not sorted;
the recovering node sorts them when it merges.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable

from lvstore.core.errors import StorageError
from lvstore.core.logging import get_logger
from lvstore.core.models import ColumnFile, ColumnType, CompressionType, ValueRange, find_partition
from lvstore.storage.column_file import column_file_path, write_column_file
from lvstore.storage.merger import PartitionColumns

logger = get_logger(__name__)

# fragment grid: [range_index][column position] -> descriptor or None (no rows)
FragmentGrid = list[list[ColumnFile | None]]


class Repartitioner:
    """Buckets rows by range and writes per-range fragment files.

    Args:
        partitioning_column_id: Column whose value selects the target range
        ranges: Target group's ranges, sorted and non-overlapping
        column_ids: Columns written to every fragment, in manifest order
        column_types: Type of every output column
        compressions: Compression per output column (absent means NONE)
        output_dir: Directory receiving the fragments
        relative_to: ``local_path`` of each fragment descriptor is made
            relative to this directory (the node tmp dir)
        max_fragment_tuples: Refuse to write a bucket larger than this
        on_rows: Called with the running row count every ``check_every`` rows
    """

    def __init__(
        self,
        partitioning_column_id: int,
        ranges: list[ValueRange],
        column_ids: list[int],
        column_types: dict[int, ColumnType],
        compressions: dict[int, CompressionType],
        output_dir: Path,
        *,
        relative_to: Path,
        max_fragment_tuples: int | None = None,
        on_rows: Callable[[int], None] | None = None,
        check_every: int = 100_000,
    ):
        if partitioning_column_id not in column_ids:
            raise StorageError(
                f"partitioning column {partitioning_column_id} is not among output columns"
            )
        if not ranges:
            raise StorageError("repartitioning needs at least one target range")
        self.partitioning_column_id = partitioning_column_id
        self.ranges = list(ranges)
        self.column_ids = list(column_ids)
        self.column_types = column_types
        self.compressions = compressions
        self.output_dir = Path(output_dir)
        self.relative_to = Path(relative_to)
        self.max_fragment_tuples = max_fragment_tuples
        self._on_rows = on_rows
        self._check_every = check_every

    def repartition(self, inputs: Iterable[PartitionColumns]) -> FragmentGrid:
        buckets: list[list[list[Any]]] = [
            [[] for _ in self.column_ids] for _ in self.ranges
        ]
        key_pos = self.column_ids.index(self.partitioning_column_id)
        count = 0
        for partition in inputs:
            columns = [partition[c] for c in self.column_ids]
            for row in zip(*columns):
                idx = find_partition(self.ranges, row[key_pos])
                if idx is None:
                    raise StorageError(
                        f"value {row[key_pos]!r} of column {self.partitioning_column_id} "
                        f"falls outside every target range"
                    )
                for out, value in zip(buckets[idx], row):
                    out.append(value)
                count += 1
                if self._on_rows is not None and count % self._check_every == 0:
                    self._on_rows(count)

        grid: FragmentGrid = []
        for range_index, columns in enumerate(buckets):
            size = len(columns[0])
            if size == 0:
                grid.append([None] * len(self.column_ids))
                continue
            if self.max_fragment_tuples is not None and size > self.max_fragment_tuples:
                raise StorageError(
                    f"fragment for range {range_index} holds {size} tuples, "
                    f"limit is {self.max_fragment_tuples}"
                )
            row_files: list[ColumnFile | None] = []
            for column_id, values in zip(self.column_ids, columns):
                path = column_file_path(self.output_dir / str(range_index), str(column_id))
                cf = write_column_file(
                    path,
                    values,
                    self.column_types.get(column_id, ColumnType.INTEGER),
                    self.compressions.get(column_id, CompressionType.NONE),
                )
                cf.column_id = column_id
                cf.local_path = str(
                    (self.output_dir / str(range_index) / str(column_id)).relative_to(self.relative_to)
                )
                row_files.append(cf)
            grid.append(row_files)
        logger.info(
            "repartitioned",
            tuples=count,
            ranges=len(self.ranges),
            non_empty=sum(1 for row in grid if row[0] is not None),
        )
        return grid


__all__ = ["FragmentGrid", "Repartitioner"]
