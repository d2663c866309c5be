"""Merge partitions of several fractures that share a scheme and a range."""

from __future__ import annotations

import shutil

from lvstore.core.errors import TaskExecutionError
from lvstore.core.logging import get_logger
from lvstore.core.models import ReplicaPartitionStatus, TaskType
from lvstore.storage.merger import PartitionMergerForSameScheme
from lvstore.storage.registration import register_temporary_files_as_column_files
from lvstore.storage.transport import ConnectionScope
from lvstore.tasks.base import TaskRunner
from lvstore.tasks.io import read_partition_columns
from lvstore.tasks.layout import ReplicaLayout
from lvstore.tasks.params import MergePartitionSameSchemeTaskParameters

logger = get_logger(__name__)


class MergePartitionSameSchemeTaskRunner(TaskRunner[MergePartitionSameSchemeTaskParameters]):
    task_type = TaskType.MERGE_PARTITION_SAME_SCHEME
    parameters_class = MergePartitionSameSchemeTaskParameters

    def run_task(self) -> list[str]:
        repo = self.repository
        params = self.parameters
        target = repo.get_replica_partition(params.new_partition_id)
        layout = ReplicaLayout.load(repo, target.replica_id)

        bases = []
        for partition_id in params.base_partition_ids or []:
            base = repo.get_replica_partition(partition_id)
            base_scheme = repo.get_replica(base.replica_id).scheme_id
            if base_scheme != layout.scheme.scheme_id:
                raise TaskExecutionError(
                    f"partition {partition_id} belongs to scheme {base_scheme}, "
                    f"not {layout.scheme.scheme_id}"
                )
            if base.range_index != target.range_index:
                raise TaskExecutionError(
                    f"partition {partition_id} covers range {base.range_index}, "
                    f"not {target.range_index}"
                )
            if base.status == ReplicaPartitionStatus.EMPTY:
                continue
            if base.status != ReplicaPartitionStatus.OK:
                raise TaskExecutionError(f"base partition {partition_id} is {base.status.value}")
            bases.append(base)

        folder = self.context.new_tmp_folder(f"merge_p{target.partition_id}")
        try:
            with ConnectionScope(self.context.transport) as connections:
                inputs = []
                for base in bases:
                    self.check_task_canceled()
                    inputs.append(
                        read_partition_columns(self.context, connections, base, layout.column_ids)
                    )
            self.report_progress(0.5)

            merger = PartitionMergerForSameScheme(
                layout.column_ids,
                layout.column_types,
                layout.compressions,
                layout.sort_column_id,
                folder,
                value_index_stride=self.context.settings.value_index_stride,
                on_rows=self.checkpoint,
                check_every=self.check_every,
            )
            result = merger.merge(inputs)
            if result.tuple_count == 0:
                repo.update_replica_partition(
                    target.partition_id,
                    status=ReplicaPartitionStatus.EMPTY,
                    node_id=self.context.node_id,
                )
                logger.info("merged_partition_empty", partition_id=target.partition_id)
                return []

            registered = register_temporary_files_as_column_files(
                repo, self.context.root_dir, target.partition_id, result.files,
            )
            repo.update_replica_partition(
                target.partition_id,
                status=ReplicaPartitionStatus.OK,
                node_id=self.context.node_id,
            )
            logger.info(
                "partitions_merged",
                partition_id=target.partition_id,
                base_partitions=len(bases),
                tuples=result.tuple_count,
            )
            return [cf.local_path for cf in registered]
        finally:
            shutil.rmtree(folder, ignore_errors=True)
