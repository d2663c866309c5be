"""Metadata repository interface.

The orchestration engine only ever talks to the metadata store through
:class:`MetadataRepository`. Every read returns a detached snapshot and
every update is a partial, atomic read-modify-write: fields that are not
passed are left untouched.

Backends implement five storage primitives (``_load``, ``_save``,
``_query``, ``_delete``, ``_next_id``) over JSON-safe payload dicts; the
entity-level operations, status transition checks and cross-entity
invariants live here once.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable

from lvstore.core.errors import EntityNotFoundError, RepositoryError
from lvstore.core.models import (
    Column,
    ColumnFile,
    ColumnType,
    CompressionType,
    Entity,
    Fracture,
    Job,
    JobStatus,
    JobType,
    Rack,
    RackAssignment,
    RackNode,
    Replica,
    ReplicaGroup,
    ReplicaPartition,
    ReplicaPartitionStatus,
    ReplicaScheme,
    ReplicaStatus,
    SubPartitionScheme,
    Table,
    Task,
    TaskStatus,
    TaskType,
    ValueRange,
    utcnow,
    validate_job_transition,
    validate_task_transition,
)


_UNSET: Any = object()


@dataclass(frozen=True)
class EntityKind:
    """How one entity type maps onto the generic storage primitives."""

    name: str
    model: type[Entity]
    id_field: str
    parent_field: str | None = None
    node_field: str | None = None
    status_field: str | None = None

    def index_values(self, entity: Entity) -> dict[str, Any]:
        def value(attr: str | None) -> Any:
            if attr is None:
                return None
            v = getattr(entity, attr)
            return getattr(v, "value", v)

        return {
            "parent_id": value(self.parent_field),
            "node_id": value(self.node_field),
            "status": value(self.status_field),
        }


KINDS: dict[str, EntityKind] = {
    k.name: k
    for k in [
        EntityKind("job", Job, "job_id", status_field="status"),
        EntityKind("task", Task, "task_id", "job_id", "node_id", "status"),
        EntityKind("table", Table, "table_id"),
        EntityKind("column", Column, "column_id", "table_id"),
        EntityKind("fracture", Fracture, "fracture_id", "table_id"),
        EntityKind("replica_group", ReplicaGroup, "group_id", "table_id"),
        EntityKind("replica_scheme", ReplicaScheme, "scheme_id", "group_id"),
        EntityKind("replica", Replica, "replica_id", "fracture_id", status_field="status"),
        EntityKind("sub_partition_scheme", SubPartitionScheme, "sub_partition_scheme_id", "fracture_id"),
        EntityKind("replica_partition", ReplicaPartition, "partition_id", "replica_id", "node_id", "status"),
        EntityKind("rack", Rack, "rack_id"),
        EntityKind("rack_node", RackNode, "node_id", "rack_id"),
        EntityKind("rack_assignment", RackAssignment, "assignment_id", "fracture_id"),
        EntityKind("column_file", ColumnFile, "column_file_id", "partition_id"),
    ]
}


class MetadataRepository(ABC):
    """Durable metadata store for jobs, tasks and the replica catalog."""

    def __init__(self) -> None:
        # serializes read-modify-write sequences across threads
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ #
    # Storage primitives
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _load(self, kind: str, entity_id: int) -> dict[str, Any] | None:
        """Return the stored payload or ``None``."""

    @abstractmethod
    def _save(self, kind: str, entity_id: int, payload: dict[str, Any], index: dict[str, Any]) -> None:
        """Insert or replace one payload together with its index values."""

    @abstractmethod
    def _query(
        self,
        kind: str,
        *,
        parent_id: int | None = None,
        node_id: int | None = None,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        """Payloads of *kind* matching every given index value, ordered by id."""

    @abstractmethod
    def _delete(self, kind: str, entity_id: int) -> bool:
        """Remove one payload; return whether it existed."""

    @abstractmethod
    def _next_id(self, kind: str) -> int:
        """Allocate the next id (starting at 1) for *kind*."""

    def close(self) -> None:
        """Release backend resources."""

    # ------------------------------------------------------------------ #
    # Generic entity helpers
    # ------------------------------------------------------------------ #

    def _get(self, kind: str, entity_id: int) -> Any:
        try:
            payload = self._load(kind, entity_id)
        except RepositoryError:
            raise
        except Exception as exc:
            raise RepositoryError(f"failed to read {kind} {entity_id}", cause=exc) from exc
        if payload is None:
            raise EntityNotFoundError(kind, entity_id)
        return KINDS[kind].model.from_dict(payload)

    def _put(self, kind: str, entity: Entity) -> None:
        spec = KINDS[kind]
        entity_id = getattr(entity, spec.id_field)
        try:
            self._save(kind, entity_id, entity.to_dict(), spec.index_values(entity))
        except RepositoryError:
            raise
        except Exception as exc:
            raise RepositoryError(f"failed to write {kind} {entity_id}", cause=exc) from exc

    def _create(self, kind: str, **fields: Any) -> Any:
        spec = KINDS[kind]
        with self._lock:
            fields[spec.id_field] = self._next_id(kind)
            entity = spec.model(**fields)
            self._put(kind, entity)
            return entity.copy()

    def _list(self, kind: str, **filters: Any) -> list[Any]:
        filters = {k: getattr(v, "value", v) for k, v in filters.items()}
        try:
            payloads = self._query(kind, **filters)
        except RepositoryError:
            raise
        except Exception as exc:
            raise RepositoryError(f"failed to query {kind}", cause=exc) from exc
        model = KINDS[kind].model
        return [model.from_dict(p) for p in payloads]

    # ------------------------------------------------------------------ #
    # Jobs
    # ------------------------------------------------------------------ #

    def create_job(self, job_type: JobType, description: str = "", parameters: bytes = b"") -> Job:
        return self._create(
            "job", job_type=job_type, description=description, parameters=parameters,
        )

    def get_job(self, job_id: int) -> Job:
        return self._get("job", job_id)

    def update_job(
        self,
        job_id: int,
        *,
        status: JobStatus | None = None,
        progress: float | None = None,
        error_messages: str | None = None,
    ) -> Job:
        """Partial update. Writing the current status again is a no-op."""
        with self._lock:
            job: Job = self._get("job", job_id)
            if status is not None and status != job.status:
                validate_job_transition(job.status, status)
                job.status = status
                if status == JobStatus.RUNNING and job.started_at is None:
                    job.started_at = utcnow()
                if status.is_finished:
                    job.finished_at = utcnow()
            if progress is not None:
                job.progress = min(1.0, max(0.0, progress))
            if error_messages is not None:
                job.error_messages = error_messages
            self._put("job", job)
            return job.copy()

    def get_all_jobs(self, status: JobStatus | None = None) -> list[Job]:
        return self._list("job", status=status) if status else self._list("job")

    # ------------------------------------------------------------------ #
    # Tasks
    # ------------------------------------------------------------------ #

    def create_task(
        self,
        job_id: int,
        node_id: int,
        task_type: TaskType,
        parameters: bytes = b"",
        status: TaskStatus = TaskStatus.CREATED,
    ) -> Task:
        return self._create(
            "task", job_id=job_id, node_id=node_id, task_type=task_type,
            parameters=parameters, status=status,
        )

    def get_task(self, task_id: int) -> Task:
        return self._get("task", task_id)

    def update_task(
        self,
        task_id: int,
        *,
        status: TaskStatus | None = None,
        progress: float | None = None,
        output_paths: list[str] | None = None,
        error_messages: str | None = None,
    ) -> Task:
        """Partial update. Terminal statuses are final."""
        with self._lock:
            task: Task = self._get("task", task_id)
            if status is not None and status != task.status:
                validate_task_transition(task.status, status)
                task.status = status
                if status == TaskStatus.RUNNING and task.started_at is None:
                    task.started_at = utcnow()
                if status.is_finished:
                    task.finished_at = utcnow()
            if progress is not None:
                task.progress = min(1.0, max(0.0, progress))
            if output_paths is not None:
                task.output_paths = list(output_paths)
            if error_messages is not None:
                task.error_messages = error_messages
            self._put("task", task)
            return task.copy()

    def get_all_tasks_by_job(self, job_id: int) -> list[Task]:
        return self._list("task", parent_id=job_id)

    def get_all_tasks_by_node_and_status(self, node_id: int, status: TaskStatus) -> list[Task]:
        return self._list("task", node_id=node_id, status=status)

    # ------------------------------------------------------------------ #
    # Tables, columns, fractures
    # ------------------------------------------------------------------ #

    def create_table(self, name: str, fracturing_column_id: int | None = None) -> Table:
        return self._create("table", name=name, fracturing_column_id=fracturing_column_id)

    def get_table(self, table_id: int) -> Table:
        return self._get("table", table_id)

    def create_column(
        self, table_id: int, name: str, column_type: ColumnType = ColumnType.INTEGER
    ) -> Column:
        with self._lock:
            order = len(self._list("column", parent_id=table_id))
            return self._create(
                "column", table_id=table_id, name=name, column_type=column_type, order=order,
            )

    def get_column(self, column_id: int) -> Column:
        return self._get("column", column_id)

    def get_all_columns_by_table(self, table_id: int) -> list[Column]:
        return sorted(self._list("column", parent_id=table_id), key=lambda c: c.order)

    def create_fracture(
        self, table_id: int, range: ValueRange | None = None, tuple_count: int = 0
    ) -> Fracture:
        return self._create(
            "fracture", table_id=table_id, range=range or ValueRange(), tuple_count=tuple_count,
        )

    def get_fracture(self, fracture_id: int) -> Fracture:
        return self._get("fracture", fracture_id)

    def get_all_fractures_by_table(self, table_id: int) -> list[Fracture]:
        return self._list("fracture", parent_id=table_id)

    def update_fracture_tuple_count(self, fracture_id: int, tuple_count: int) -> Fracture:
        with self._lock:
            fracture: Fracture = self._get("fracture", fracture_id)
            fracture.tuple_count = tuple_count
            self._put("fracture", fracture)
            return fracture

    def drop_fracture(self, fracture_id: int) -> None:
        """Remove a fracture with its replicas, partitions and column file records."""
        with self._lock:
            for replica in self.get_all_replicas_by_fracture(fracture_id):
                for partition in self.get_all_replica_partitions_by_replica(replica.replica_id):
                    for cf in self.get_all_column_files_by_partition(partition.partition_id):
                        self._delete("column_file", cf.column_file_id)
                    self._delete("replica_partition", partition.partition_id)
                self._delete("replica", replica.replica_id)
            for sps in self._list("sub_partition_scheme", parent_id=fracture_id):
                self._delete("sub_partition_scheme", sps.sub_partition_scheme_id)
            for assignment in self.get_rack_assignments_by_fracture(fracture_id):
                self._delete("rack_assignment", assignment.assignment_id)
            self._delete("fracture", fracture_id)

    # ------------------------------------------------------------------ #
    # Replica groups and schemes
    # ------------------------------------------------------------------ #

    def create_replica_group(
        self,
        table_id: int,
        partitioning_column_id: int | None = None,
        ranges: list[ValueRange] | None = None,
        linked_group_id: int | None = None,
    ) -> ReplicaGroup:
        with self._lock:
            if linked_group_id is not None:
                self._get("replica_group", linked_group_id)
            return self._create(
                "replica_group",
                table_id=table_id,
                partitioning_column_id=partitioning_column_id,
                ranges=list(ranges) if ranges else [ValueRange()],
                linked_group_id=linked_group_id,
            )

    def link_replica_group(self, group_id: int, linked_group_id: int | None) -> ReplicaGroup:
        """Set the group whose layout this group follows. Cycles are rejected."""
        with self._lock:
            group: ReplicaGroup = self._get("replica_group", group_id)
            seen = {group_id}
            current = linked_group_id
            while current is not None:
                if current in seen:
                    raise RepositoryError(
                        f"linking group {group_id} to {linked_group_id} forms a cycle"
                    )
                seen.add(current)
                current = self._get("replica_group", current).linked_group_id
            group.linked_group_id = linked_group_id
            self._put("replica_group", group)
            return group.copy()

    def get_replica_group(self, group_id: int) -> ReplicaGroup:
        return self._get("replica_group", group_id)

    def get_all_replica_groups_by_table(self, table_id: int) -> list[ReplicaGroup]:
        return self._list("replica_group", parent_id=table_id)

    def create_replica_scheme(
        self,
        group_id: int,
        sort_column_id: int | None = None,
        column_compressions: dict[int, CompressionType] | None = None,
    ) -> ReplicaScheme:
        with self._lock:
            self._get("replica_group", group_id)
            return self._create(
                "replica_scheme",
                group_id=group_id,
                sort_column_id=sort_column_id,
                column_compressions=dict(column_compressions or {}),
            )

    def get_replica_scheme(self, scheme_id: int) -> ReplicaScheme:
        return self._get("replica_scheme", scheme_id)

    def get_all_replica_schemes_by_group(self, group_id: int) -> list[ReplicaScheme]:
        return self._list("replica_scheme", parent_id=group_id)

    # ------------------------------------------------------------------ #
    # Sub-partition schemes, replicas, partitions
    # ------------------------------------------------------------------ #

    def create_sub_partition_scheme(self, fracture_id: int, group_id: int) -> SubPartitionScheme:
        """Return the (fracture, group) sub-partition scheme, creating it once."""
        with self._lock:
            existing = self.get_sub_partition_scheme_by_fracture_and_group(fracture_id, group_id)
            if existing is not None:
                return existing
            group: ReplicaGroup = self._get("replica_group", group_id)
            return self._create(
                "sub_partition_scheme",
                fracture_id=fracture_id,
                group_id=group_id,
                ranges=list(group.ranges),
            )

    def get_sub_partition_scheme(self, sub_partition_scheme_id: int) -> SubPartitionScheme:
        return self._get("sub_partition_scheme", sub_partition_scheme_id)

    def get_sub_partition_scheme_by_fracture_and_group(
        self, fracture_id: int, group_id: int
    ) -> SubPartitionScheme | None:
        for sps in self._list("sub_partition_scheme", parent_id=fracture_id):
            if sps.group_id == group_id:
                return sps
        return None

    def create_replica(
        self, scheme_id: int, fracture_id: int, status: ReplicaStatus = ReplicaStatus.NOT_READY
    ) -> Replica:
        with self._lock:
            if self.get_replica_from_scheme_and_fracture(scheme_id, fracture_id) is not None:
                raise RepositoryError(
                    f"scheme {scheme_id} already has a replica of fracture {fracture_id}"
                )
            return self._create(
                "replica", scheme_id=scheme_id, fracture_id=fracture_id, status=status,
            )

    def get_replica(self, replica_id: int) -> Replica:
        return self._get("replica", replica_id)

    def update_replica_status(self, replica_id: int, status: ReplicaStatus) -> Replica:
        with self._lock:
            replica: Replica = self._get("replica", replica_id)
            replica.status = status
            self._put("replica", replica)
            return replica.copy()

    def get_all_replicas_by_fracture(self, fracture_id: int) -> list[Replica]:
        return self._list("replica", parent_id=fracture_id)

    def get_replica_from_scheme_and_fracture(self, scheme_id: int, fracture_id: int) -> Replica | None:
        for replica in self._list("replica", parent_id=fracture_id):
            if replica.scheme_id == scheme_id:
                return replica
        return None

    def create_replica_partition(
        self,
        replica_id: int,
        sub_partition_scheme_id: int,
        range_index: int,
        node_id: int | None = None,
        status: ReplicaPartitionStatus = ReplicaPartitionStatus.LOST,
    ) -> ReplicaPartition:
        return self._create(
            "replica_partition",
            replica_id=replica_id,
            sub_partition_scheme_id=sub_partition_scheme_id,
            range_index=range_index,
            node_id=node_id,
            status=status,
        )

    def get_replica_partition(self, partition_id: int) -> ReplicaPartition:
        return self._get("replica_partition", partition_id)

    def update_replica_partition(
        self,
        partition_id: int,
        *,
        status: ReplicaPartitionStatus | None = None,
        node_id: Any = _UNSET,
    ) -> ReplicaPartition:
        """Partial update. ``node_id=None`` clears the owner."""
        with self._lock:
            partition: ReplicaPartition = self._get("replica_partition", partition_id)
            if status is not None:
                partition.status = status
            if node_id is not _UNSET:
                partition.node_id = node_id
            self._put("replica_partition", partition)
            return partition.copy()

    def get_all_replica_partitions_by_replica(self, replica_id: int) -> list[ReplicaPartition]:
        return sorted(
            self._list("replica_partition", parent_id=replica_id), key=lambda p: p.range_index,
        )

    def get_all_replica_partitions_by_node(self, node_id: int) -> list[ReplicaPartition]:
        return self._list("replica_partition", node_id=node_id)

    # ------------------------------------------------------------------ #
    # Racks
    # ------------------------------------------------------------------ #

    def create_rack(self, name: str) -> Rack:
        return self._create("rack", name=name)

    def get_rack(self, rack_id: int) -> Rack:
        return self._get("rack", rack_id)

    def create_rack_node(self, rack_id: int, name: str, address: str = "") -> RackNode:
        with self._lock:
            self._get("rack", rack_id)
            return self._create("rack_node", rack_id=rack_id, name=name, address=address)

    def get_rack_node(self, node_id: int) -> RackNode:
        return self._get("rack_node", node_id)

    def get_all_rack_nodes(self) -> list[RackNode]:
        return self._list("rack_node")

    def get_all_rack_nodes_by_rack(self, rack_id: int) -> list[RackNode]:
        return self._list("rack_node", parent_id=rack_id)

    def create_rack_assignment(self, fracture_id: int, rack_id: int, group_id: int) -> RackAssignment:
        """Give *group_id* ownership of *rack_id* for one fracture."""
        with self._lock:
            for assignment in self.get_rack_assignments_by_fracture(fracture_id):
                if assignment.rack_id == rack_id:
                    if assignment.group_id == group_id:
                        return assignment
                    raise RepositoryError(
                        f"rack {rack_id} is already owned by group {assignment.group_id} "
                        f"for fracture {fracture_id}"
                    )
            return self._create(
                "rack_assignment", fracture_id=fracture_id, rack_id=rack_id, group_id=group_id,
            )

    def get_rack_assignments_by_fracture(self, fracture_id: int) -> list[RackAssignment]:
        return self._list("rack_assignment", parent_id=fracture_id)

    # ------------------------------------------------------------------ #
    # Column files
    # ------------------------------------------------------------------ #

    def create_column_file(self, column_file: ColumnFile) -> ColumnFile:
        """Store a column file record under a freshly allocated id."""
        fields = column_file.to_dict()
        fields.pop("column_file_id")
        with self._lock:
            new_id = self._next_id("column_file")
            payload = {**fields, "column_file_id": new_id}
            created = ColumnFile.from_dict(payload)
            self._put("column_file", created)
            return created.copy()

    def get_column_file(self, column_file_id: int) -> ColumnFile:
        return self._get("column_file", column_file_id)

    def update_column_file_path(self, column_file_id: int, local_path: str) -> ColumnFile:
        with self._lock:
            cf: ColumnFile = self._get("column_file", column_file_id)
            cf.local_path = local_path
            self._put("column_file", cf)
            return cf.copy()

    def drop_column_file(self, column_file_id: int) -> bool:
        with self._lock:
            return self._delete("column_file", column_file_id)

    def get_all_column_files_by_partition(self, partition_id: int) -> list[ColumnFile]:
        return self._list("column_file", parent_id=partition_id)

    def get_column_file_by_partition_and_column(
        self, partition_id: int, column_id: int
    ) -> ColumnFile | None:
        for cf in self._list("column_file", parent_id=partition_id):
            if cf.column_id == column_id:
                return cf
        return None

    # ------------------------------------------------------------------ #
    # Bulk helpers
    # ------------------------------------------------------------------ #

    def get_tasks(self, task_ids: Iterable[int]) -> list[Task]:
        return [self.get_task(task_id) for task_id in task_ids]


__all__ = ["EntityKind", "KINDS", "MetadataRepository"]
