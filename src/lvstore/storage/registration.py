"""Promote scratch column files to a partition's permanent column files.

For each scratch file: any existing record for the same (partition,
column) is dropped together with its file, a new record is created to
obtain an id, the file is moved to a permanent path that embeds that id
(so two registrations can never collide), and the record's path is set.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path

from lvstore.core.logging import get_logger
from lvstore.core.models import ColumnFile
from lvstore.core.repository import MetadataRepository
from lvstore.storage.column_file import column_file_path, move_file
from lvstore.storage.merger import MergedColumnFile

logger = get_logger(__name__)


def permanent_local_path(partition_id: int, column_id: int, column_file_id: int) -> str:
    """Node-root-relative path (without extension) of a registered column file."""
    return f"partitions/{partition_id}/c{column_id}_{column_file_id}"


def register_temporary_files_as_column_files(
    repository: MetadataRepository,
    root_dir: Path,
    partition_id: int,
    files: list[MergedColumnFile],
) -> list[ColumnFile]:
    registered = []
    for merged in files:
        previous = repository.get_column_file_by_partition_and_column(partition_id, merged.column_id)
        if previous is not None:
            repository.drop_column_file(previous.column_file_id)
            column_file_path(root_dir, previous.local_path).unlink(missing_ok=True)
            logger.info(
                "column_file_replaced",
                partition_id=partition_id,
                column_id=merged.column_id,
                old_column_file_id=previous.column_file_id,
            )

        record = repository.create_column_file(
            dataclasses.replace(
                merged.column_file,
                partition_id=partition_id,
                column_id=merged.column_id,
                local_path="",
            )
        )
        local_path = permanent_local_path(partition_id, merged.column_id, record.column_file_id)
        move_file(merged.path, column_file_path(root_dir, local_path))
        registered.append(repository.update_column_file_path(record.column_file_id, local_path))
    return registered


__all__ = ["permanent_local_path", "register_temporary_files_as_column_files"]
