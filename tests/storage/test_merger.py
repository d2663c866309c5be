"""Tests for partition mergers and column file registration."""

from __future__ import annotations

import pytest

from lvstore.core.errors import StorageError
from lvstore.core.models import ColumnType, CompressionType
from lvstore.core.repository import InMemoryMetadataRepository
from lvstore.storage.column_file import column_file_path, read_column_file
from lvstore.storage.merger import PartitionMergerForSameScheme, PartitionMergerGeneral
from lvstore.storage.registration import permanent_local_path, register_temporary_files_as_column_files

KEY, VAL = 1, 2
TYPES = {KEY: ColumnType.INTEGER, VAL: ColumnType.VARCHAR}


def _values(result):
    return {f.column_id: read_column_file(f.path).values for f in result.files}


class TestSameSchemeMerger:
    """K-way merge of pre-sorted inputs."""

    def test_interleaves_sorted_inputs(self, tmp_path):
        merger = PartitionMergerForSameScheme([KEY, VAL], TYPES, {}, KEY, tmp_path)
        result = merger.merge([
            {KEY: [1, 4, 9], VAL: ["a", "d", "i"]},
            {KEY: [2, 4, 5], VAL: ["b", "D", "e"]},
        ])
        values = _values(result)
        assert result.tuple_count == 6
        assert values[KEY] == [1, 2, 4, 4, 5, 9]
        assert sorted(values[VAL]) == sorted(["a", "b", "d", "D", "e", "i"])

    def test_nulls_sort_first(self, tmp_path):
        merger = PartitionMergerForSameScheme([KEY], TYPES, {}, KEY, tmp_path)
        result = merger.merge([{KEY: [None, 3]}, {KEY: [None, 1]}])
        assert _values(result)[KEY] == [None, None, 1, 3]

    def test_sort_column_file_is_marked_sorted(self, tmp_path):
        merger = PartitionMergerForSameScheme(
            [KEY, VAL], TYPES, {VAL: CompressionType.DICTIONARY}, KEY, tmp_path,
        )
        result = merger.merge([{KEY: [1], VAL: ["x"]}])
        by_column = {f.column_id: f.column_file for f in result.files}
        assert by_column[KEY].sorted is True
        assert by_column[VAL].sorted is False
        assert by_column[VAL].compression == CompressionType.DICTIONARY

    def test_without_sort_column_concatenates(self, tmp_path):
        merger = PartitionMergerForSameScheme([KEY], TYPES, {}, None, tmp_path)
        result = merger.merge([{KEY: [5, 1]}, {KEY: [3]}])
        assert _values(result)[KEY] == [5, 1, 3]

    def test_missing_column_rejected(self, tmp_path):
        merger = PartitionMergerForSameScheme([KEY, VAL], TYPES, {}, KEY, tmp_path)
        with pytest.raises(StorageError, match="lacks columns"):
            merger.merge([{KEY: [1]}])

    def test_ragged_columns_rejected(self, tmp_path):
        merger = PartitionMergerForSameScheme([KEY, VAL], TYPES, {}, KEY, tmp_path)
        with pytest.raises(StorageError, match="different lengths"):
            merger.merge([{KEY: [1, 2], VAL: ["a"]}])

    def test_sort_column_must_be_output(self, tmp_path):
        with pytest.raises(StorageError):
            PartitionMergerForSameScheme([VAL], TYPES, {}, KEY, tmp_path)

    def test_row_callback(self, tmp_path):
        seen = []
        merger = PartitionMergerForSameScheme(
            [KEY], TYPES, {}, KEY, tmp_path, on_rows=seen.append, check_every=2,
        )
        merger.merge([{KEY: [1, 2, 3, 4, 5]}])
        assert seen == [2, 4]

    def test_callback_exception_aborts(self, tmp_path):
        def stop(_count):
            raise RuntimeError("canceled")

        merger = PartitionMergerForSameScheme(
            [KEY], TYPES, {}, KEY, tmp_path, on_rows=stop, check_every=1,
        )
        with pytest.raises(RuntimeError):
            merger.merge([{KEY: [1, 2]}])
        assert not list(tmp_path.glob("*.lvc"))


class TestGeneralMerger:
    """Unsorted inputs are sorted before merging."""

    def test_sorts_unsorted_inputs(self, tmp_path):
        merger = PartitionMergerGeneral([KEY, VAL], TYPES, {}, KEY, tmp_path)
        result = merger.merge([
            {KEY: [9, 1, 5], VAL: ["i", "a", "e"]},
            {KEY: [4, 2], VAL: ["d", "b"]},
        ])
        values = _values(result)
        assert values[KEY] == [1, 2, 4, 5, 9]
        assert values[VAL] == ["a", "b", "d", "e", "i"]

    def test_sorts_by_non_key_column(self, tmp_path):
        merger = PartitionMergerGeneral([KEY, VAL], TYPES, {}, VAL, tmp_path)
        result = merger.merge([{KEY: [1, 2, 3], VAL: ["c", "a", "b"]}])
        assert _values(result)[KEY] == [2, 3, 1]


class TestRegistration:
    """Scratch files become permanent, id-named column files."""

    def test_register_and_replace(self, tmp_path):
        repo = InMemoryMetadataRepository()
        root = tmp_path / "root"

        first = PartitionMergerGeneral([KEY], TYPES, {}, KEY, tmp_path / "s1").merge([{KEY: [2, 1]}])
        [record] = register_temporary_files_as_column_files(repo, root, 7, first.files)
        assert record.local_path == permanent_local_path(7, KEY, record.column_file_id)
        assert record.partition_id == 7
        old_path = column_file_path(root, record.local_path)
        assert read_column_file(old_path).values == [1, 2]
        assert not first.files[0].path.exists()

        second = PartitionMergerGeneral([KEY], TYPES, {}, KEY, tmp_path / "s2").merge([{KEY: [3]}])
        [replacement] = register_temporary_files_as_column_files(repo, root, 7, second.files)
        assert replacement.column_file_id != record.column_file_id
        assert not old_path.exists()
        assert repo.get_all_column_files_by_partition(7) == [replacement]
