"""Parameter records of every task type."""

from __future__ import annotations

from dataclasses import dataclass, field

from lvstore.core.models import CompressionType, ValueRange
from lvstore.core.params import ParameterReader, ParameterWriter, Parameters


@dataclass
class MergePartitionSameSchemeTaskParameters(Parameters):
    """Merge base partitions (same scheme and range, different fractures) into one."""

    new_partition_id: int = 0
    base_partition_ids: list[int] | None = None

    def write(self, writer: ParameterWriter) -> None:
        writer.int32(self.new_partition_id).int_array(self.base_partition_ids)

    @classmethod
    def read(cls, reader: ParameterReader) -> MergePartitionSameSchemeTaskParameters:
        return cls(new_partition_id=reader.int32(), base_partition_ids=reader.int_array())


@dataclass
class RecoverPartitionFromBuddyTaskParameters(Parameters):
    """Rebuild partitions of a damaged replica from a replica in the same group."""

    replica_id: int = 0
    buddy_replica_id: int = 0
    partition_ids: list[int] | None = None

    def write(self, writer: ParameterWriter) -> None:
        writer.int32(self.replica_id).int32(self.buddy_replica_id).int_array(self.partition_ids)

    @classmethod
    def read(cls, reader: ParameterReader) -> RecoverPartitionFromBuddyTaskParameters:
        return cls(
            replica_id=reader.int32(),
            buddy_replica_id=reader.int32(),
            partition_ids=reader.int_array(),
        )


@dataclass
class RepartitionTaskParameters(Parameters):
    """Split local source partitions into fragments along the target group's ranges.

    Attributes:
        partitioning_column_id: Column whose value selects the target range
        partition_ranges: Target group's ranges
        output_column_ids: Columns written to every fragment
        output_compressions: Compression per output column (same order)
        base_partition_ids: Source partitions on this node
        read_cache_tuples: Rows processed between cancellation checks
        max_fragment_tuples: Optional upper bound on one fragment's size
    """

    partitioning_column_id: int = 0
    partition_ranges: list[ValueRange] | None = None
    output_column_ids: list[int] | None = None
    output_compressions: list[CompressionType] | None = None
    base_partition_ids: list[int] | None = None
    read_cache_tuples: int = 1 << 16
    max_fragment_tuples: int | None = None

    def write(self, writer: ParameterWriter) -> None:
        (
            writer.int32(self.partitioning_column_id)
            .value_ranges(self.partition_ranges)
            .int_array(self.output_column_ids)
            .compressions(self.output_compressions)
            .int_array(self.base_partition_ids)
            .int32(self.read_cache_tuples)
            .optional_int(self.max_fragment_tuples)
        )

    @classmethod
    def read(cls, reader: ParameterReader) -> RepartitionTaskParameters:
        return cls(
            partitioning_column_id=reader.int32(),
            partition_ranges=reader.value_ranges(),
            output_column_ids=reader.int_array(),
            output_compressions=reader.compressions(),
            base_partition_ids=reader.int_array(),
            read_cache_tuples=reader.int32(),
            max_fragment_tuples=reader.optional_int(),
        )


@dataclass
class RecoverPartitionFromRepartitionedFilesTaskParameters(Parameters):
    """Rebuild partitions from fragments listed in per-node manifests.

    ``repartition_summary_file_map`` maps a node id to the path of that
    node's manifest, relative to the node's tmp dir.
    """

    replica_id: int = 0
    partition_ids: list[int] | None = None
    repartition_summary_file_map: dict[int, str] = field(default_factory=dict)

    def write(self, writer: ParameterWriter) -> None:
        (
            writer.int32(self.replica_id)
            .int_array(self.partition_ids)
            .int_string_map(self.repartition_summary_file_map)
        )

    @classmethod
    def read(cls, reader: ParameterReader) -> RecoverPartitionFromRepartitionedFilesTaskParameters:
        return cls(
            replica_id=reader.int32(),
            partition_ids=reader.int_array(),
            repartition_summary_file_map=reader.int_string_map() or {},
        )


@dataclass
class DeletePartitionFilesTaskParameters(Parameters):
    partition_ids: list[int] | None = None

    def write(self, writer: ParameterWriter) -> None:
        writer.int_array(self.partition_ids)

    @classmethod
    def read(cls, reader: ParameterReader) -> DeletePartitionFilesTaskParameters:
        return cls(partition_ids=reader.int_array())


@dataclass
class DeleteTmpFilesTaskParameters(Parameters):
    """Paths relative to the node tmp dir; anything resolving outside it is refused."""

    paths: list[str] | None = None

    def write(self, writer: ParameterWriter) -> None:
        writer.string_array(self.paths)

    @classmethod
    def read(cls, reader: ParameterReader) -> DeleteTmpFilesTaskParameters:
        return cls(paths=reader.string_array())


__all__ = [
    "MergePartitionSameSchemeTaskParameters",
    "RecoverPartitionFromBuddyTaskParameters",
    "RepartitionTaskParameters",
    "RecoverPartitionFromRepartitionedFilesTaskParameters",
    "DeletePartitionFilesTaskParameters",
    "DeleteTmpFilesTaskParameters",
]
