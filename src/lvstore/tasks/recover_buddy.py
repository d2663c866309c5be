"""Rebuild partitions from a buddy replica.

A buddy is a replica of the same fracture under another scheme of the same
replica group, so partition ``i`` of the buddy covers exactly the key range
of partition ``i`` of the damaged replica. Recovery copies the buddy's
columns, reorders them by the damaged scheme's sort column, re-encodes
them with the damaged scheme's compressions and registers them as the
damaged partition's column files on this node.
"""

from __future__ import annotations

import shutil

from lvstore.core.errors import TaskExecutionError
from lvstore.core.logging import get_logger
from lvstore.core.models import ReplicaPartition, ReplicaPartitionStatus, TaskType
from lvstore.storage.merger import PartitionMergerForSameScheme, PartitionMergerGeneral
from lvstore.storage.registration import register_temporary_files_as_column_files
from lvstore.storage.transport import ConnectionScope
from lvstore.tasks.base import TaskRunner
from lvstore.tasks.io import read_partition_columns
from lvstore.tasks.layout import ReplicaLayout
from lvstore.tasks.params import RecoverPartitionFromBuddyTaskParameters

logger = get_logger(__name__)


class RecoverPartitionFromBuddyTaskRunner(TaskRunner[RecoverPartitionFromBuddyTaskParameters]):
    task_type = TaskType.RECOVER_PARTITION_FROM_BUDDY
    parameters_class = RecoverPartitionFromBuddyTaskParameters

    def run_task(self) -> list[str]:
        repo = self.repository
        params = self.parameters
        target = ReplicaLayout.load(repo, params.replica_id)
        buddy = ReplicaLayout.load(repo, params.buddy_replica_id)
        if target.group.group_id != buddy.group.group_id:
            raise TaskExecutionError(
                f"replica {params.buddy_replica_id} is not a buddy of {params.replica_id}: "
                f"groups {buddy.group.group_id} and {target.group.group_id}"
            )
        buddy_by_range = {p.range_index: p for p in buddy.partitions(repo)}
        merger_class = (
            PartitionMergerForSameScheme
            if buddy.sort_column_id == target.sort_column_id
            else PartitionMergerGeneral
        )

        partition_ids = params.partition_ids or []
        outputs: list[str] = []
        with ConnectionScope(self.context.transport) as connections:
            for done, partition_id in enumerate(partition_ids):
                self.check_task_canceled()
                partition = repo.get_replica_partition(partition_id)
                source = buddy_by_range.get(partition.range_index)
                if source is None:
                    raise TaskExecutionError(
                        f"buddy replica {params.buddy_replica_id} has no partition "
                        f"for range {partition.range_index}"
                    )
                outputs.extend(
                    self._recover_one(partition, source, target, connections, merger_class)
                )
                self.report_progress((done + 1) / len(partition_ids))
        return outputs

    def _recover_one(
        self,
        partition: ReplicaPartition,
        source: ReplicaPartition,
        target: ReplicaLayout,
        connections: ConnectionScope,
        merger_class: type[PartitionMergerForSameScheme],
    ) -> list[str]:
        repo = self.repository
        if source.status == ReplicaPartitionStatus.EMPTY:
            repo.update_replica_partition(
                partition.partition_id,
                status=ReplicaPartitionStatus.EMPTY,
                node_id=self.context.node_id,
            )
            logger.info("partition_recovered_empty", partition_id=partition.partition_id)
            return []
        if source.status != ReplicaPartitionStatus.OK:
            raise TaskExecutionError(
                f"buddy partition {source.partition_id} is {source.status.value}"
            ).with_context(partition_id=source.partition_id)

        columns = read_partition_columns(self.context, connections, source, target.column_ids)
        folder = self.context.new_tmp_folder(f"buddy_p{partition.partition_id}")
        try:
            merger = merger_class(
                target.column_ids,
                target.column_types,
                target.compressions,
                target.sort_column_id,
                folder,
                value_index_stride=self.context.settings.value_index_stride,
                on_rows=self.checkpoint,
                check_every=self.check_every,
            )
            result = merger.merge([columns])
            registered = register_temporary_files_as_column_files(
                repo, self.context.root_dir, partition.partition_id, result.files,
            )
        finally:
            shutil.rmtree(folder, ignore_errors=True)

        repo.update_replica_partition(
            partition.partition_id,
            status=ReplicaPartitionStatus.OK,
            node_id=self.context.node_id,
        )
        logger.info(
            "partition_recovered_from_buddy",
            partition_id=partition.partition_id,
            buddy_partition_id=source.partition_id,
            source_node_id=source.node_id,
            tuples=result.tuple_count,
        )
        return [cf.local_path for cf in registered]
