"""
Single-host cluster helpers for tests.

Provides a :class:`Cluster` (rack, nodes, transport, node contexts), a
sample table with two replica groups and three schemes, and helpers that
load rows into a replica through the production merger and read them
back from the owning node's data directory.

Usage:
    catalog = build_catalog(cluster.repo)
    replica = load_replica(cluster, catalog.key_sorted, catalog.fracture_id, ROWS)
    assert multiset(read_replica_rows(cluster, replica.replica_id)) == multiset(ROWS)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

from lvstore.core.models import (
    ColumnType,
    CompressionType,
    JobType,
    Replica,
    ReplicaPartitionStatus,
    ReplicaStatus,
    Task,
    TaskStatus,
    TaskType,
    ValueRange,
)
from lvstore.core.params import Parameters
from lvstore.core.repository import MetadataRepository
from lvstore.core.settings import LVStoreSettings
from lvstore.storage.column_file import column_file_path, read_column_file
from lvstore.storage.merger import PartitionMergerGeneral
from lvstore.storage.registration import register_temporary_files_as_column_files
from lvstore.storage.transport import LocalNodeTransport
from lvstore.tasks.context import DataEngineContext
from lvstore.tasks.registry import build_task_registry
from lvstore.tasks.worker import DataTaskWorker

# 100 rows; key is unique, qty and name repeat
ROWS: list[dict[str, Any]] = [
    {"key": k, "qty": k % 10, "name": f"n{k % 7}"} for k in range(100)
]


def wait_for(predicate: Callable[[], Any], timeout: float = 5.0, interval: float = 0.005) -> Any:
    """Poll *predicate* until it returns something truthy; fail after *timeout* seconds."""
    deadline = time.monotonic() + timeout
    while True:
        result = predicate()
        if result:
            return result
        if time.monotonic() > deadline:
            raise AssertionError(f"condition not met within {timeout}s")
        time.sleep(interval)


# =============================================================================
# Cluster
# =============================================================================


@dataclass
class Cluster:
    """One rack, several nodes, one shared repository."""

    repo: MetadataRepository
    transport: LocalNodeTransport
    settings: LVStoreSettings
    rack_id: int
    node_ids: list[int]
    contexts: dict[int, DataEngineContext]
    workers: list[DataTaskWorker] = field(default_factory=list)

    def context(self, node_id: int) -> DataEngineContext:
        return self.contexts[node_id]

    def start_workers(self) -> None:
        for node_id in self.node_ids:
            worker = DataTaskWorker(self.contexts[node_id], poll_interval_ms=5, max_workers=2)
            worker.start_background()
            self.workers.append(worker)

    def stop_workers(self) -> None:
        workers, self.workers = self.workers, []
        for worker in workers:
            worker.shutdown(wait=True)


def build_cluster(repo: MetadataRepository, settings: LVStoreSettings, nodes: int = 3) -> Cluster:
    rack = repo.create_rack("rack-a")
    node_ids = [repo.create_rack_node(rack.rack_id, f"node-{i}").node_id for i in range(nodes)]
    transport = LocalNodeTransport.for_cluster(node_ids, settings.root_dir, settings.tmp_dir)
    contexts = {}
    for node_id in node_ids:
        dirs = transport.directories(node_id)
        contexts[node_id] = DataEngineContext(
            node_id=node_id,
            root_dir=dirs.root_dir,
            tmp_dir=dirs.tmp_dir,
            repository=repo,
            transport=transport,
            settings=settings,
        )
    return Cluster(
        repo=repo,
        transport=transport,
        settings=settings,
        rack_id=rack.rack_id,
        node_ids=node_ids,
        contexts=contexts,
    )


# =============================================================================
# Sample catalog
# =============================================================================


@dataclass
class Catalog:
    """Ids of the sample table.

    Group ``by_key`` splits on ``key`` at 50 and holds two schemes:
    ``key_sorted`` (sorted by key, qty RLE) and ``qty_sorted`` (sorted by
    qty, name DICTIONARY). Group ``by_qty`` splits on ``qty`` at 5 and holds
    ``other_group`` (sorted by qty, key SNAPPY).
    """

    table_id: int
    key: int
    qty: int
    name: int
    by_key: int
    by_qty: int
    key_sorted: int
    qty_sorted: int
    other_group: int
    fracture_id: int

    @property
    def column_ids(self) -> list[int]:
        return [self.key, self.qty, self.name]


def build_catalog(repo: MetadataRepository) -> Catalog:
    table = repo.create_table("lineitem")
    key = repo.create_column(table.table_id, "key", ColumnType.INTEGER).column_id
    qty = repo.create_column(table.table_id, "qty", ColumnType.INTEGER).column_id
    name = repo.create_column(table.table_id, "name", ColumnType.VARCHAR).column_id

    by_key = repo.create_replica_group(
        table.table_id, key, [ValueRange(None, 50), ValueRange(50, None)],
    ).group_id
    by_qty = repo.create_replica_group(
        table.table_id, qty, [ValueRange(None, 5), ValueRange(5, None)],
    ).group_id
    key_sorted = repo.create_replica_scheme(
        by_key, key, {qty: CompressionType.RLE},
    ).scheme_id
    qty_sorted = repo.create_replica_scheme(
        by_key, qty, {name: CompressionType.DICTIONARY},
    ).scheme_id
    other_group = repo.create_replica_scheme(
        by_qty, qty, {key: CompressionType.SNAPPY},
    ).scheme_id
    fracture = repo.create_fracture(table.table_id, ValueRange(0, 100), len(ROWS))
    return Catalog(
        table_id=table.table_id,
        key=key,
        qty=qty,
        name=name,
        by_key=by_key,
        by_qty=by_qty,
        key_sorted=key_sorted,
        qty_sorted=qty_sorted,
        other_group=other_group,
        fracture_id=fracture.fracture_id,
    )


# =============================================================================
# Loading and reading replicas
# =============================================================================


def load_replica(
    cluster: Cluster,
    scheme_id: int,
    fracture_id: int,
    rows: list[dict[str, Any]],
    *,
    node_offset: int = 0,
) -> Replica:
    """Write *rows* as an OK replica; range ``i`` lands on node ``i + node_offset``."""
    repo = cluster.repo
    scheme = repo.get_replica_scheme(scheme_id)
    group = repo.get_replica_group(scheme.group_id)
    fracture = repo.get_fracture(fracture_id)
    columns = repo.get_all_columns_by_table(fracture.table_id)
    split_on = repo.get_column(group.partitioning_column_id).name
    sps = repo.create_sub_partition_scheme(fracture_id, group.group_id)
    replica = repo.create_replica(scheme_id, fracture_id, ReplicaStatus.OK)

    for range_index, rng in enumerate(group.ranges):
        node_id = cluster.node_ids[(range_index + node_offset) % len(cluster.node_ids)]
        selected = [r for r in rows if rng.contains(r[split_on])]
        status = ReplicaPartitionStatus.OK if selected else ReplicaPartitionStatus.EMPTY
        partition = repo.create_replica_partition(
            replica.replica_id, sps.sub_partition_scheme_id, range_index, node_id, status,
        )
        if not selected:
            continue
        ctx = cluster.context(node_id)
        merger = PartitionMergerGeneral(
            [c.column_id for c in columns],
            {c.column_id: c.column_type for c in columns},
            {c.column_id: scheme.compression_of(c.column_id) for c in columns},
            scheme.sort_column_id,
            ctx.new_tmp_folder("load"),
        )
        result = merger.merge([{c.column_id: [r[c.name] for r in selected] for c in columns}])
        register_temporary_files_as_column_files(
            repo, ctx.root_dir, partition.partition_id, result.files,
        )
    return replica


def read_partition_rows(cluster: Cluster, partition_id: int) -> list[dict[str, Any]]:
    """Rows of one partition, read straight from its owner's data directory."""
    repo = cluster.repo
    partition = repo.get_replica_partition(partition_id)
    if partition.status == ReplicaPartitionStatus.EMPTY:
        return []
    replica = repo.get_replica(partition.replica_id)
    table_id = repo.get_fracture(replica.fracture_id).table_id
    columns = repo.get_all_columns_by_table(table_id)
    root = cluster.context(partition.node_id).root_dir
    values = {}
    for c in columns:
        cf = repo.get_column_file_by_partition_and_column(partition_id, c.column_id)
        values[c.name] = read_column_file(column_file_path(root, cf.local_path)).values
    names = [c.name for c in columns]
    return [dict(zip(names, row)) for row in zip(*(values[n] for n in names))]


def read_replica_rows(cluster: Cluster, replica_id: int) -> list[dict[str, Any]]:
    rows = []
    for partition in cluster.repo.get_all_replica_partitions_by_replica(replica_id):
        rows.extend(read_partition_rows(cluster, partition.partition_id))
    return rows


def damage_replica(cluster: Cluster, replica_id: int, *, forget_nodes: bool = False) -> None:
    """Mark every non-empty partition LOST and delete its files."""
    repo = cluster.repo
    repo.update_replica_status(replica_id, ReplicaStatus.NOT_READY)
    for partition in repo.get_all_replica_partitions_by_replica(replica_id):
        if partition.status == ReplicaPartitionStatus.EMPTY:
            continue
        root = cluster.context(partition.node_id).root_dir
        for cf in repo.get_all_column_files_by_partition(partition.partition_id):
            column_file_path(root, cf.local_path).unlink(missing_ok=True)
            repo.drop_column_file(cf.column_file_id)
        if forget_nodes:
            repo.update_replica_partition(
                partition.partition_id, status=ReplicaPartitionStatus.LOST, node_id=None,
            )
        else:
            repo.update_replica_partition(
                partition.partition_id, status=ReplicaPartitionStatus.LOST,
            )


def multiset(rows: list[dict[str, Any]]) -> list[tuple]:
    return sorted((r["key"], r["qty"], r["name"]) for r in rows)


# =============================================================================
# Running a task without a worker
# =============================================================================


def run_task_inline(cluster: Cluster, node_id: int, task_type: TaskType, params: Parameters) -> Task:
    """Create a task, mark it RUNNING and run its runner on this thread."""
    repo = cluster.repo
    job = repo.create_job(JobType.RECOVER_FRACTURE_FROM_BUDDY, "inline")
    task = repo.create_task(
        job.job_id, node_id, task_type, params.to_bytes(), TaskStatus.START_REQUESTED,
    )
    task = repo.update_task(task.task_id, status=TaskStatus.RUNNING)
    runner = build_task_registry().instantiate(task_type)
    runner.init(cluster.context(node_id), task)
    runner.run()
    return repo.get_task(task.task_id)
