"""Recover a damaged replica from a buddy replica in the same group.

Buddies share their group's ranges, so partitions are recovered one to one:
every damaged partition (neither OK nor EMPTY) is rebuilt from the buddy
partition at the same range index. One task is created per node that will
hold recovered partitions; when all succeed the damaged replica is OK.
"""

from __future__ import annotations

from collections import defaultdict

from lvstore.core.errors import DecompositionError
from lvstore.core.logging import get_logger
from lvstore.core.models import (
    Job,
    JobType,
    Replica,
    ReplicaPartitionStatus,
    ReplicaStatus,
    TaskType,
)
from lvstore.execution.controller import JobController
from lvstore.jobs.params import RecoverFractureJobParameters
from lvstore.jobs.placement import NodePlacer
from lvstore.tasks.params import RecoverPartitionFromBuddyTaskParameters

logger = get_logger(__name__)

HEALTHY = (ReplicaPartitionStatus.OK, ReplicaPartitionStatus.EMPTY)


class RecoverFractureFromBuddyJobController(JobController[RecoverFractureJobParameters]):
    job_type = JobType.RECOVER_FRACTURE_FROM_BUDDY

    damaged: Replica
    buddy: Replica

    def _init_job(self, params: RecoverFractureJobParameters) -> Job:
        repo = self.repository
        damaged_scheme = repo.get_replica_scheme(params.damaged_scheme_id)
        buddy_scheme = repo.get_replica_scheme(params.source_scheme_id)
        if damaged_scheme.group_id != buddy_scheme.group_id:
            raise DecompositionError(
                f"schemes {params.damaged_scheme_id} and {params.source_scheme_id} are in "
                f"different groups; use cross-group recovery"
            )
        damaged = repo.get_replica_from_scheme_and_fracture(params.damaged_scheme_id, params.fracture_id)
        buddy = repo.get_replica_from_scheme_and_fracture(params.source_scheme_id, params.fracture_id)
        if damaged is None or buddy is None:
            raise DecompositionError(
                f"fracture {params.fracture_id} lacks a replica for scheme "
                f"{params.damaged_scheme_id if damaged is None else params.source_scheme_id}"
            )
        if buddy.status != ReplicaStatus.OK:
            raise DecompositionError(
                f"buddy replica {buddy.replica_id} is {buddy.status.value}, cannot recover from it"
            )
        self.damaged = damaged
        self.buddy = buddy
        return self._create_job(
            f"recover fracture {params.fracture_id} scheme {params.damaged_scheme_id} "
            f"from buddy scheme {params.source_scheme_id}"
        )

    def _run_job(self) -> None:
        repo = self.repository
        damaged_scheme = repo.get_replica_scheme(self.damaged.scheme_id)
        buddy_nodes = {
            p.range_index: p.node_id
            for p in repo.get_all_replica_partitions_by_replica(self.buddy.replica_id)
        }
        placer = NodePlacer(repo, self.damaged.fracture_id, damaged_scheme.group_id)

        by_node: dict[int, list[int]] = defaultdict(list)
        for partition in repo.get_all_replica_partitions_by_replica(self.damaged.replica_id):
            if partition.status in HEALTHY:
                continue
            node_id = partition.node_id
            if node_id is None:
                node_id = placer.place(buddy_nodes.get(partition.range_index))
            repo.update_replica_partition(
                partition.partition_id,
                status=ReplicaPartitionStatus.BEING_RECOVERED,
                node_id=node_id,
            )
            by_node[node_id].append(partition.partition_id)

        if not by_node:
            logger.info("replica_already_healthy", replica_id=self.damaged.replica_id)
            repo.update_replica_status(self.damaged.replica_id, ReplicaStatus.OK)
            return

        tasks = []
        for node_id, partition_ids in sorted(by_node.items()):
            params = RecoverPartitionFromBuddyTaskParameters(
                replica_id=self.damaged.replica_id,
                buddy_replica_id=self.buddy.replica_id,
                partition_ids=partition_ids,
            )
            tasks.append(
                repo.create_task(
                    self.job_id, node_id, TaskType.RECOVER_PARTITION_FROM_BUDDY, params.to_bytes(),
                )
            )
        logger.info(
            "buddy_recovery_tasks_created",
            replica_id=self.damaged.replica_id,
            tasks=len(tasks),
            partitions=sum(len(v) for v in by_node.values()),
        )

        final = self.join_tasks(self._request_start(tasks), 0.0, 1.0)
        if self._all_done(final) and not self.has_error and not self.token.is_cancelled:
            repo.update_replica_status(self.damaged.replica_id, ReplicaStatus.OK)
            logger.info("replica_recovered", replica_id=self.damaged.replica_id)
