"""Repartition phase of cross-group recovery.

Reads this node's partitions of a healthy replica, splits their rows along
the damaged group's ranges and publishes a manifest describing the
fragments. The task's single output path is the manifest, relative to this
node's tmp dir.
"""

from __future__ import annotations

import shutil
from typing import Any, Iterator

from lvstore.core.errors import TaskExecutionError
from lvstore.core.logging import get_logger
from lvstore.core.models import ReplicaPartitionStatus, TaskType
from lvstore.storage.repartitioner import Repartitioner
from lvstore.storage.summary import SUMMARY_FILE_NAME, RepartitionSummary, publish_summary
from lvstore.storage.transport import ConnectionScope
from lvstore.tasks.base import TaskRunner
from lvstore.tasks.io import read_partition_columns
from lvstore.tasks.params import RepartitionTaskParameters

logger = get_logger(__name__)


class RepartitionTaskRunner(TaskRunner[RepartitionTaskParameters]):
    task_type = TaskType.REPARTITION
    parameters_class = RepartitionTaskParameters

    def run_task(self) -> list[str]:
        repo = self.repository
        params = self.parameters
        column_ids = params.output_column_ids or []
        compressions = params.output_compressions or []
        if len(compressions) != len(column_ids):
            raise TaskExecutionError(
                f"{len(compressions)} compressions given for {len(column_ids)} output columns"
            )
        column_types = {cid: repo.get_column(cid).column_type for cid in column_ids}
        partitions = [repo.get_replica_partition(pid) for pid in params.base_partition_ids or []]
        for p in partitions:
            if p.status not in (ReplicaPartitionStatus.OK, ReplicaPartitionStatus.EMPTY):
                raise TaskExecutionError(f"source partition {p.partition_id} is {p.status.value}")

        folder = self.context.new_tmp_folder(f"repartition_j{self.task.job_id}")
        try:
            with ConnectionScope(self.context.transport) as connections:

                def inputs() -> Iterator[dict[int, list[Any]]]:
                    for done, partition in enumerate(partitions):
                        self.check_task_canceled()
                        if partition.status == ReplicaPartitionStatus.OK:
                            yield read_partition_columns(
                                self.context, connections, partition, column_ids,
                            )
                        self.report_progress(0.9 * (done + 1) / len(partitions))

                repartitioner = Repartitioner(
                    params.partitioning_column_id,
                    params.partition_ranges or [],
                    column_ids,
                    column_types,
                    dict(zip(column_ids, compressions)),
                    folder,
                    relative_to=self.context.tmp_dir,
                    max_fragment_tuples=params.max_fragment_tuples,
                    on_rows=self.checkpoint,
                    check_every=params.read_cache_tuples or self.check_every,
                )
                grid = repartitioner.repartition(inputs())

            summary_path = folder / SUMMARY_FILE_NAME
            publish_summary(
                RepartitionSummary(node_id=self.context.node_id, column_ids=column_ids, fragments=grid),
                summary_path,
            )
        except BaseException:
            shutil.rmtree(folder, ignore_errors=True)
            raise
        logger.info(
            "repartition_summary_published",
            summary=self.context.tmp_relative(summary_path),
            partitions=len(partitions),
        )
        return [self.context.tmp_relative(summary_path)]
