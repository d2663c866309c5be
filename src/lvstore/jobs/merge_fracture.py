"""Merge several fractures of one table into a single new fracture.

Every replica scheme of the table gets a replica of the new fracture, and
each of its partitions is built by one MERGE_PARTITION_SAME_SCHEME task
from the partitions at the same range index of the base fractures. The
task runs on the node already holding most of those base partitions, so
most reads stay local.

With ``drop_merged`` the base partitions' files are deleted afterwards and
the base fractures are dropped from the repository.
"""

from __future__ import annotations

from collections import defaultdict

from lvstore.core.errors import DecompositionError, EntityNotFoundError
from lvstore.core.logging import get_logger
from lvstore.core.models import (
    Fracture,
    Job,
    JobType,
    ReplicaPartitionStatus,
    ReplicaStatus,
    Task,
    TaskType,
    ValueRange,
)
from lvstore.execution.controller import JobController
from lvstore.jobs.params import MergeFractureJobParameters
from lvstore.jobs.placement import NodePlacer, most_common_node
from lvstore.tasks.params import (
    DeletePartitionFilesTaskParameters,
    MergePartitionSameSchemeTaskParameters,
)

logger = get_logger(__name__)


def union_range(ranges: list[ValueRange]) -> ValueRange:
    """Smallest range covering all *ranges*; an unbounded side stays unbounded."""
    starts = [r.start for r in ranges]
    ends = [r.end for r in ranges]
    return ValueRange(
        start=None if any(s is None for s in starts) else min(starts),
        end=None if any(e is None for e in ends) else max(ends),
    )


class MergeFractureJobController(JobController[MergeFractureJobParameters]):
    job_type = JobType.MERGE_FRACTURE

    fractures: list[Fracture]
    new_fracture: Fracture | None = None

    def _init_job(self, params: MergeFractureJobParameters) -> Job:
        repo = self.repository
        fracture_ids = list(dict.fromkeys(params.fracture_ids or []))
        if len(fracture_ids) < 2:
            raise DecompositionError("merging needs at least two distinct fractures")
        try:
            fractures = [repo.get_fracture(fid) for fid in fracture_ids]
        except EntityNotFoundError as exc:
            raise DecompositionError(str(exc), cause=exc) from exc

        table_ids = {f.table_id for f in fractures}
        if len(table_ids) != 1:
            raise DecompositionError(
                f"fractures {fracture_ids} belong to different tables {sorted(table_ids)}"
            )
        table_id = fractures[0].table_id

        for group in repo.get_all_replica_groups_by_table(table_id):
            for scheme in repo.get_all_replica_schemes_by_group(group.group_id):
                for fracture in fractures:
                    replica = repo.get_replica_from_scheme_and_fracture(
                        scheme.scheme_id, fracture.fracture_id,
                    )
                    if replica is None or replica.status != ReplicaStatus.OK:
                        raise DecompositionError(
                            f"fracture {fracture.fracture_id} has no healthy replica "
                            f"for scheme {scheme.scheme_id}"
                        )
                    partitions = repo.get_all_replica_partitions_by_replica(replica.replica_id)
                    if len(partitions) != len(group.ranges):
                        raise DecompositionError(
                            f"replica {replica.replica_id} has {len(partitions)} partitions, "
                            f"group {group.group_id} defines {len(group.ranges)} ranges"
                        )

        self.fractures = fractures
        return self._create_job(f"merge fractures {fracture_ids} of table {table_id}")

    def _run_job(self) -> None:
        repo = self.repository
        params = self.params
        table_id = self.fractures[0].table_id
        new = repo.create_fracture(
            table_id,
            range=union_range([f.range for f in self.fractures]),
            tuple_count=sum(f.tuple_count for f in self.fractures),
        )
        self.new_fracture = new
        self._copy_rack_assignments(new.fracture_id)
        logger.info(
            "merged_fracture_created",
            fracture_id=new.fracture_id,
            base_fractures=[f.fracture_id for f in self.fractures],
        )

        tasks: list[Task] = []
        new_replicas: list[int] = []
        base_by_node: dict[int, list[int]] = defaultdict(list)
        for group in repo.get_all_replica_groups_by_table(table_id):
            sps = repo.create_sub_partition_scheme(new.fracture_id, group.group_id)
            placer = NodePlacer(repo, new.fracture_id, group.group_id)
            for scheme in repo.get_all_replica_schemes_by_group(group.group_id):
                replica = repo.create_replica(scheme.scheme_id, new.fracture_id)
                new_replicas.append(replica.replica_id)
                bases = [
                    repo.get_all_replica_partitions_by_replica(
                        repo.get_replica_from_scheme_and_fracture(
                            scheme.scheme_id, f.fracture_id
                        ).replica_id
                    )
                    for f in self.fractures
                ]
                for range_index in range(len(group.ranges)):
                    at_range = [partitions[range_index] for partitions in bases]
                    for p in at_range:
                        if p.node_id is not None:
                            base_by_node[p.node_id].append(p.partition_id)
                    node_id = placer.place(most_common_node(p.node_id for p in at_range))
                    partition = repo.create_replica_partition(
                        replica.replica_id,
                        sps.sub_partition_scheme_id,
                        range_index,
                        node_id=node_id,
                        status=ReplicaPartitionStatus.BEING_RECOVERED,
                    )
                    task_params = MergePartitionSameSchemeTaskParameters(
                        new_partition_id=partition.partition_id,
                        base_partition_ids=[p.partition_id for p in at_range],
                    )
                    tasks.append(
                        repo.create_task(
                            self.job_id,
                            node_id,
                            TaskType.MERGE_PARTITION_SAME_SCHEME,
                            task_params.to_bytes(),
                        )
                    )

        logger.info("merge_tasks_created", tasks=len(tasks), replicas=len(new_replicas))
        merge_end = 0.9 if params.drop_merged else 1.0
        merged = self.join_tasks(self._request_start(tasks), 0.0, merge_end)
        if self.has_error or self.token.is_cancelled or not self._all_done(merged):
            logger.warning("fracture_merge_incomplete", fracture_id=new.fracture_id)
            return
        for replica_id in new_replicas:
            repo.update_replica_status(replica_id, ReplicaStatus.OK)

        if params.drop_merged:
            self._drop_bases(base_by_node, merge_end)

    def _copy_rack_assignments(self, fracture_id: int) -> None:
        # rack ownership follows the first base fracture
        for assignment in self.repository.get_rack_assignments_by_fracture(
            self.fractures[0].fracture_id
        ):
            self.repository.create_rack_assignment(
                fracture_id, assignment.rack_id, assignment.group_id,
            )

    def _drop_bases(self, base_by_node: dict[int, list[int]], base_progress: float) -> None:
        repo = self.repository
        tasks = []
        for node_id, partition_ids in sorted(base_by_node.items()):
            task_params = DeletePartitionFilesTaskParameters(partition_ids=partition_ids)
            tasks.append(
                repo.create_task(
                    self.job_id, node_id, TaskType.DELETE_PARTITION_FILES, task_params.to_bytes(),
                )
            )
        deleted = self.join_tasks(self._request_start(tasks), base_progress, 1.0)
        if self.has_error or self.token.is_cancelled or not self._all_done(deleted):
            return
        for fracture in self.fractures:
            repo.drop_fracture(fracture.fracture_id)
        logger.info(
            "base_fractures_dropped", fracture_ids=[f.fracture_id for f in self.fractures],
        )
