"""Tests for the binary parameter encoding of jobs and tasks."""

from __future__ import annotations

import pytest

from lvstore.core.errors import ParameterEncodingError
from lvstore.core.models import CompressionType, ValueRange
from lvstore.core.params import ParameterReader, ParameterWriter
from lvstore.jobs.params import MergeFractureJobParameters, RecoverFractureJobParameters
from lvstore.tasks.params import (
    DeletePartitionFilesTaskParameters,
    DeleteTmpFilesTaskParameters,
    MergePartitionSameSchemeTaskParameters,
    RecoverPartitionFromBuddyTaskParameters,
    RecoverPartitionFromRepartitionedFilesTaskParameters,
    RepartitionTaskParameters,
)


class TestWriterReader:
    """Field-level encoding."""

    def test_fields_read_back_in_order(self):
        data = (
            ParameterWriter()
            .int32(-7)
            .int64(1 << 40)
            .float64(0.25)
            .boolean(True)
            .string("héllo")
            .string(None)
            .optional_int(None)
            .optional_int(9)
            .getvalue()
        )
        reader = ParameterReader(data)
        assert reader.int32() == -7
        assert reader.int64() == 1 << 40
        assert reader.float64() == 0.25
        assert reader.boolean() is True
        assert reader.string() == "héllo"
        assert reader.string() is None
        assert reader.optional_int() is None
        assert reader.optional_int() == 9
        assert reader.remaining == 0

    def test_null_and_empty_arrays_differ(self):
        data = ParameterWriter().int_array(None).int_array([]).getvalue()
        reader = ParameterReader(data)
        assert reader.int_array() is None
        assert reader.int_array() == []

    def test_map_is_written_in_key_order(self):
        a = ParameterWriter().int_string_map({3: "c", 1: "a"}).getvalue()
        b = ParameterWriter().int_string_map({1: "a", 3: "c"}).getvalue()
        assert a == b

    def test_truncated_blob_raises(self):
        data = ParameterWriter().int64(5).getvalue()
        with pytest.raises(ParameterEncodingError, match="truncated"):
            ParameterReader(data[:5]).int64()

    def test_truncated_string_raises(self):
        data = ParameterWriter().string("abcdef").getvalue()
        with pytest.raises(ParameterEncodingError):
            ParameterReader(data[:-2]).string()


class TestParameterRecords:
    """Every parameter record decodes to what was encoded."""

    @pytest.mark.parametrize(
        "params",
        [
            RecoverFractureJobParameters(),
            RecoverFractureJobParameters(fracture_id=4, damaged_scheme_id=2, source_scheme_id=1),
            MergeFractureJobParameters(),
            MergeFractureJobParameters(fracture_ids=[1, 2, 3], drop_merged=False),
            MergePartitionSameSchemeTaskParameters(),
            MergePartitionSameSchemeTaskParameters(new_partition_id=9, base_partition_ids=[1, 5]),
            RecoverPartitionFromBuddyTaskParameters(),
            RecoverPartitionFromBuddyTaskParameters(replica_id=1, buddy_replica_id=2, partition_ids=[7]),
            RepartitionTaskParameters(),
            RepartitionTaskParameters(
                partitioning_column_id=3,
                partition_ranges=[ValueRange(None, 10), ValueRange(10, "z")],
                output_column_ids=[1, 2, 3],
                output_compressions=[CompressionType.NONE, CompressionType.RLE, CompressionType.SNAPPY],
                base_partition_ids=[4, 5],
                read_cache_tuples=1000,
                max_fragment_tuples=50,
            ),
            RecoverPartitionFromRepartitionedFilesTaskParameters(),
            RecoverPartitionFromRepartitionedFilesTaskParameters(
                replica_id=3, partition_ids=[1, 2], repartition_summary_file_map={2: "a/summary", 1: "b/summary"},
            ),
            DeletePartitionFilesTaskParameters(),
            DeletePartitionFilesTaskParameters(partition_ids=[1]),
            DeleteTmpFilesTaskParameters(),
            DeleteTmpFilesTaskParameters(paths=["x", "y/z"]),
        ],
        ids=lambda p: type(p).__name__,
    )
    def test_decodes_to_original(self, params):
        assert type(params).from_bytes(params.to_bytes()) == params

    def test_trailing_bytes_rejected(self):
        data = DeleteTmpFilesTaskParameters(paths=["a"]).to_bytes() + b"\x00"
        with pytest.raises(ParameterEncodingError, match="trailing"):
            DeleteTmpFilesTaskParameters.from_bytes(data)

    def test_version_mismatch_rejected(self):
        data = ParameterWriter().int32(99).int_array([1]).getvalue()
        with pytest.raises(ParameterEncodingError, match="version"):
            DeletePartitionFilesTaskParameters.from_bytes(data)

    def test_empty_blob_rejected(self):
        with pytest.raises(ParameterEncodingError):
            RecoverFractureJobParameters.from_bytes(b"")
