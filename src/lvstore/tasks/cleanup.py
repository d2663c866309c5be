"""Deletion tasks: a partition's column files, or scratch files in the tmp dir."""

from __future__ import annotations

import shutil

from lvstore.core.logging import get_logger
from lvstore.core.models import TaskType
from lvstore.storage.column_file import column_file_path
from lvstore.tasks.base import TaskRunner
from lvstore.tasks.params import DeletePartitionFilesTaskParameters, DeleteTmpFilesTaskParameters

logger = get_logger(__name__)


class DeletePartitionFilesTaskRunner(TaskRunner[DeletePartitionFilesTaskParameters]):
    """Drops every column file of the given partitions held by this node."""

    task_type = TaskType.DELETE_PARTITION_FILES
    parameters_class = DeletePartitionFilesTaskParameters

    def run_task(self) -> list[str]:
        repo = self.repository
        deleted: list[str] = []
        for partition_id in self.parameters.partition_ids or []:
            self.check_task_canceled()
            partition = repo.get_replica_partition(partition_id)
            if partition.node_id != self.context.node_id:
                logger.warning(
                    "partition_not_on_this_node",
                    partition_id=partition_id,
                    owner_node_id=partition.node_id,
                )
                continue
            for cf in repo.get_all_column_files_by_partition(partition_id):
                column_file_path(self.context.root_dir, cf.local_path).unlink(missing_ok=True)
                repo.drop_column_file(cf.column_file_id)
                deleted.append(cf.local_path)
        logger.info("partition_files_deleted", files=len(deleted))
        return deleted


class DeleteTmpFilesTaskRunner(TaskRunner[DeleteTmpFilesTaskParameters]):
    """Deletes files or folders under this node's tmp dir, refusing anything else."""

    task_type = TaskType.DELETE_TMP_FILES
    parameters_class = DeleteTmpFilesTaskParameters

    def run_task(self) -> list[str]:
        tmp_root = self.context.tmp_dir.resolve()
        deleted: list[str] = []
        for path in self.parameters.paths or []:
            self.check_task_canceled()
            target = (tmp_root / path).resolve()
            if target == tmp_root or not target.is_relative_to(tmp_root):
                logger.warning("tmp_delete_refused", path=path)
                continue
            if target.is_dir():
                shutil.rmtree(target)
            elif target.exists():
                target.unlink()
            else:
                continue
            deleted.append(path)
        logger.info("tmp_files_deleted", files=len(deleted))
        return deleted
