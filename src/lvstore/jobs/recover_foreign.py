"""Recover a damaged replica from a replica in another group.

Partition boundaries differ between groups, so recovery goes through two
task phases:

1. **Repartition** (progress 0 to 0.5): every node holding OK partitions of
   the source replica splits them along the damaged group's ranges and
   publishes a manifest of the fragments it wrote.
2. **Recover** (progress 0.5 to 1.0): every node that will hold damaged
   partitions collects the fragments of its ranges from all manifests,
   merges and sorts them, and registers the result.

Afterwards fire-and-forget DELETE_TMP_FILES tasks remove the fragments on
the repartitioning nodes, whether or not the recovery succeeded.
"""

from __future__ import annotations

from collections import defaultdict
from pathlib import PurePosixPath

from lvstore.core.errors import DecompositionError, best_effort
from lvstore.core.logging import get_logger
from lvstore.core.models import (
    CompressionType,
    Job,
    JobType,
    Replica,
    ReplicaPartitionStatus,
    ReplicaStatus,
    Task,
    TaskStatus,
    TaskType,
)
from lvstore.execution.controller import JobController
from lvstore.jobs.params import RecoverFractureJobParameters
from lvstore.jobs.placement import NodePlacer
from lvstore.jobs.recover_buddy import HEALTHY
from lvstore.tasks.params import (
    DeleteTmpFilesTaskParameters,
    RecoverPartitionFromRepartitionedFilesTaskParameters,
    RepartitionTaskParameters,
)

logger = get_logger(__name__)


class RecoverFractureForeignJobController(JobController[RecoverFractureJobParameters]):
    job_type = JobType.RECOVER_FRACTURE_FOREIGN

    damaged: Replica
    source: Replica

    def _init_job(self, params: RecoverFractureJobParameters) -> Job:
        repo = self.repository
        damaged_scheme = repo.get_replica_scheme(params.damaged_scheme_id)
        source_scheme = repo.get_replica_scheme(params.source_scheme_id)
        if damaged_scheme.group_id == source_scheme.group_id:
            raise DecompositionError(
                f"schemes {params.damaged_scheme_id} and {params.source_scheme_id} share "
                f"group {damaged_scheme.group_id}; use buddy recovery"
            )
        damaged = repo.get_replica_from_scheme_and_fracture(params.damaged_scheme_id, params.fracture_id)
        source = repo.get_replica_from_scheme_and_fracture(params.source_scheme_id, params.fracture_id)
        if damaged is None or source is None:
            raise DecompositionError(
                f"fracture {params.fracture_id} lacks a replica for scheme "
                f"{params.damaged_scheme_id if damaged is None else params.source_scheme_id}"
            )
        if source.status != ReplicaStatus.OK:
            raise DecompositionError(
                f"source replica {source.replica_id} is {source.status.value}, cannot recover from it"
            )
        group = repo.get_replica_group(damaged_scheme.group_id)
        if group.partitioning_column_id is None and len(group.ranges) > 1:
            raise DecompositionError(f"group {group.group_id} has ranges but no partitioning column")
        self.damaged = damaged
        self.source = source
        return self._create_job(
            f"recover fracture {params.fracture_id} scheme {params.damaged_scheme_id} "
            f"from scheme {params.source_scheme_id} of another group"
        )

    def _run_job(self) -> None:
        repo = self.repository
        damaged_scheme = repo.get_replica_scheme(self.damaged.scheme_id)
        group = repo.get_replica_group(damaged_scheme.group_id)
        fracture = repo.get_fracture(self.damaged.fracture_id)
        column_ids = [c.column_id for c in repo.get_all_columns_by_table(fracture.table_id)]

        damaged_partitions = [
            p for p in repo.get_all_replica_partitions_by_replica(self.damaged.replica_id)
            if p.status not in HEALTHY
        ]
        if not damaged_partitions:
            logger.info("replica_already_healthy", replica_id=self.damaged.replica_id)
            repo.update_replica_status(self.damaged.replica_id, ReplicaStatus.OK)
            return

        manifests: dict[int, str] = {}
        try:
            # ── Phase 1: repartition ─────────────────────────────────
            source_by_node: dict[int, list[int]] = defaultdict(list)
            for p in repo.get_all_replica_partitions_by_replica(self.source.replica_id):
                if p.status == ReplicaPartitionStatus.OK and p.node_id is not None:
                    source_by_node[p.node_id].append(p.partition_id)

            partitioning_column_id = group.partitioning_column_id
            if partitioning_column_id is None:
                partitioning_column_id = column_ids[0]
            repartition_tasks = []
            for node_id, partition_ids in sorted(source_by_node.items()):
                params = RepartitionTaskParameters(
                    partitioning_column_id=partitioning_column_id,
                    partition_ranges=list(group.ranges),
                    output_column_ids=column_ids,
                    output_compressions=[CompressionType.NONE] * len(column_ids),
                    base_partition_ids=partition_ids,
                    read_cache_tuples=self.settings.cancel_check_rows,
                )
                repartition_tasks.append(
                    repo.create_task(self.job_id, node_id, TaskType.REPARTITION, params.to_bytes())
                )
            logger.info("repartition_tasks_created", tasks=len(repartition_tasks))
            phase1 = self.join_tasks(self._request_start(repartition_tasks), 0.0, 0.5)
            manifests = self._manifest_map(phase1)
            if self.has_error or self.token.is_cancelled or not self._all_done(phase1):
                return

            # ── Phase 2: recover ─────────────────────────────────────
            placer = NodePlacer(repo, self.damaged.fracture_id, group.group_id)
            by_node: dict[int, list[int]] = defaultdict(list)
            for partition in damaged_partitions:
                node_id = partition.node_id if partition.node_id is not None else placer.place()
                repo.update_replica_partition(
                    partition.partition_id,
                    status=ReplicaPartitionStatus.BEING_RECOVERED,
                    node_id=node_id,
                )
                by_node[node_id].append(partition.partition_id)

            recover_tasks = []
            for node_id, partition_ids in sorted(by_node.items()):
                params = RecoverPartitionFromRepartitionedFilesTaskParameters(
                    replica_id=self.damaged.replica_id,
                    partition_ids=partition_ids,
                    repartition_summary_file_map=manifests,
                )
                recover_tasks.append(
                    repo.create_task(
                        self.job_id,
                        node_id,
                        TaskType.RECOVER_PARTITION_FROM_REPARTITIONED_FILES,
                        params.to_bytes(),
                    )
                )
            logger.info("recover_tasks_created", tasks=len(recover_tasks))
            phase2 = self.join_tasks(self._request_start(recover_tasks), 0.5, 1.0)
            if self._all_done(phase2) and not self.has_error and not self.token.is_cancelled:
                repo.update_replica_status(self.damaged.replica_id, ReplicaStatus.OK)
                logger.info("replica_recovered", replica_id=self.damaged.replica_id)
        finally:
            self._cleanup_fragments(manifests)

    @staticmethod
    def _manifest_map(tasks: dict[int, Task]) -> dict[int, str]:
        return {
            t.node_id: t.output_paths[0]
            for t in tasks.values()
            if t.status == TaskStatus.DONE and t.output_paths
        }

    def _cleanup_fragments(self, manifests: dict[int, str]) -> None:
        """Ask every repartitioning node to drop its fragment folder. Not awaited."""
        for node_id, manifest in sorted(manifests.items()):
            folder = str(PurePosixPath(manifest).parent)
            params = DeleteTmpFilesTaskParameters(paths=[folder])

            def issue(node_id: int = node_id, params: DeleteTmpFilesTaskParameters = params) -> Task:
                task = self.repository.create_task(
                    self.job_id, node_id, TaskType.DELETE_TMP_FILES, params.to_bytes(),
                )
                return self.repository.update_task(task.task_id, status=TaskStatus.START_REQUESTED)

            best_effort(
                "issue_fragment_cleanup",
                issue,
                logger=logger,
                failures=self.secondary_failures,
                job_id=self.job_id,
                node_id=node_id,
            )
