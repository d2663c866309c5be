"""Partition mergers.

Both mergers take several input partitions, each given as a mapping from
column id to that column's values (all columns of one input have the same
length), and write one output column file per requested column.

:class:`PartitionMergerForSameScheme`
    Inputs are already sorted by the sort column, so rows are combined by a
    k-way merge. This is the fracture-merge and buddy-recovery path.

:class:`PartitionMergerGeneral`
    Inputs may be in any order (repartitioned fragments, buddies sorted by
    another column). Each input is stably sorted first, then merged.

Duplicate keys are preserved. Without a sort column the inputs are
concatenated in the order given.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

from lvstore.core.errors import StorageError
from lvstore.core.logging import get_logger
from lvstore.core.models import ColumnFile, ColumnType, CompressionType
from lvstore.storage.column_file import column_file_path, write_column_file

logger = get_logger(__name__)

PartitionColumns = dict[int, list[Any]]


def sort_key(value: Any) -> tuple[bool, Any]:
    """Order nulls first, then values by their natural order."""
    return (value is not None, value)


@dataclass
class MergedColumnFile:
    """An output column file still sitting in a scratch directory."""

    column_id: int
    path: Path
    column_file: ColumnFile


@dataclass
class MergeResult:
    tuple_count: int
    files: list[MergedColumnFile] = field(default_factory=list)


class PartitionMergerForSameScheme:
    """Merges partitions that are each sorted by the target sort column.

    Args:
        column_ids: Output columns in output order
        column_types: Type of every output column
        compressions: Output compression per column (absent means NONE)
        sort_column_id: Merge key, or ``None`` to concatenate
        output_dir: Scratch directory receiving ``<column_id>.lvc`` files
        on_rows: Called with the running row count every ``check_every`` rows;
            task runners pass their cancellation check here
    """

    def __init__(
        self,
        column_ids: list[int],
        column_types: dict[int, ColumnType],
        compressions: dict[int, CompressionType],
        sort_column_id: int | None,
        output_dir: Path,
        *,
        value_index_stride: int = 128,
        on_rows: Callable[[int], None] | None = None,
        check_every: int = 100_000,
    ):
        if sort_column_id is not None and sort_column_id not in column_ids:
            raise StorageError(f"sort column {sort_column_id} is not among output columns {column_ids}")
        self.column_ids = list(column_ids)
        self.column_types = column_types
        self.compressions = compressions
        self.sort_column_id = sort_column_id
        self.output_dir = Path(output_dir)
        self.value_index_stride = value_index_stride
        self._on_rows = on_rows
        self._check_every = check_every

    def _rows(self, partition: PartitionColumns) -> list[tuple[Any, ...]]:
        missing = [c for c in self.column_ids if c not in partition]
        if missing:
            raise StorageError(f"input partition lacks columns {missing}")
        columns = [partition[c] for c in self.column_ids]
        lengths = {len(col) for col in columns}
        if len(lengths) > 1:
            raise StorageError(f"input columns have different lengths: {sorted(lengths)}")
        return list(zip(*columns))

    def _prepare(self, rows: list[tuple[Any, ...]]) -> Iterable[tuple[Any, ...]]:
        return rows

    def _combine(self, inputs: list[Iterable[tuple[Any, ...]]]) -> Iterator[tuple[Any, ...]]:
        if self.sort_column_id is None:
            for rows in inputs:
                yield from rows
            return
        idx = self.column_ids.index(self.sort_column_id)
        yield from heapq.merge(*inputs, key=lambda row: sort_key(row[idx]))

    def merge(self, inputs: list[PartitionColumns]) -> MergeResult:
        """Merge *inputs* and write the output column files."""
        prepared = [self._prepare(self._rows(p)) for p in inputs]
        outputs: list[list[Any]] = [[] for _ in self.column_ids]
        count = 0
        for row in self._combine(prepared):
            for out, value in zip(outputs, row):
                out.append(value)
            count += 1
            if self._on_rows is not None and count % self._check_every == 0:
                self._on_rows(count)

        result = MergeResult(tuple_count=count)
        for column_id, values in zip(self.column_ids, outputs):
            path = column_file_path(self.output_dir, str(column_id))
            cf = write_column_file(
                path,
                values,
                self.column_types.get(column_id, ColumnType.INTEGER),
                self.compressions.get(column_id, CompressionType.NONE),
                sorted=column_id == self.sort_column_id,
                value_index_stride=self.value_index_stride,
            )
            cf.column_id = column_id
            result.files.append(MergedColumnFile(column_id=column_id, path=path, column_file=cf))
        logger.debug(
            "partitions_merged",
            inputs=len(inputs),
            tuples=count,
            sort_column_id=self.sort_column_id,
        )
        return result


class PartitionMergerGeneral(PartitionMergerForSameScheme):
    """Merges partitions in arbitrary order: stable local sort, then k-way merge."""

    def _prepare(self, rows: list[tuple[Any, ...]]) -> Iterable[tuple[Any, ...]]:
        if self.sort_column_id is None:
            return rows
        idx = self.column_ids.index(self.sort_column_id)
        return sorted(rows, key=lambda row: sort_key(row[idx]))


__all__ = [
    "PartitionColumns",
    "sort_key",
    "MergedColumnFile",
    "MergeResult",
    "PartitionMergerForSameScheme",
    "PartitionMergerGeneral",
]
