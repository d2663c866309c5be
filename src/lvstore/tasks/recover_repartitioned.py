"""Recover phase of cross-group recovery.

Every repartitioning node published a manifest of the fragments it wrote.
This runner reads all manifests, first copies every fragment that belongs
to one of its partitions into local scratch space (progress 0 to 0.5), and
then, partition by partition, sorts and merges the fragments by the damaged
scheme's sort column, re-encodes them, and registers the result as the
partition's column files on this node (progress 0.5 to 1.0). The copied
fragments are deleted at the end whatever the outcome.
"""

from __future__ import annotations

import shutil
from collections import defaultdict
from pathlib import Path
from typing import Any

from lvstore.core.errors import TaskExecutionError
from lvstore.core.logging import get_logger
from lvstore.core.models import ReplicaPartitionStatus, TaskType
from lvstore.storage.column_file import EXTENSION, column_file_path, read_column_file
from lvstore.storage.merger import PartitionMergerGeneral
from lvstore.storage.registration import register_temporary_files_as_column_files
from lvstore.storage.summary import RepartitionSummary, RepartitionSummarySet, read_summary
from lvstore.storage.transport import ConnectionScope, FileArea
from lvstore.tasks.base import TaskRunner
from lvstore.tasks.layout import ReplicaLayout
from lvstore.tasks.params import RecoverPartitionFromRepartitionedFilesTaskParameters

logger = get_logger(__name__)


class RecoverPartitionFromRepartitionedFilesTaskRunner(
    TaskRunner[RecoverPartitionFromRepartitionedFilesTaskParameters]
):
    task_type = TaskType.RECOVER_PARTITION_FROM_REPARTITIONED_FILES
    parameters_class = RecoverPartitionFromRepartitionedFilesTaskParameters

    def run_task(self) -> list[str]:
        repo = self.repository
        params = self.parameters
        layout = ReplicaLayout.load(repo, params.replica_id)
        partitions = [repo.get_replica_partition(pid) for pid in params.partition_ids or []]
        for p in partitions:
            if p.replica_id != params.replica_id:
                raise TaskExecutionError(
                    f"partition {p.partition_id} belongs to replica {p.replica_id}, "
                    f"not {params.replica_id}"
                )

        folder = self.context.new_tmp_folder(f"recover_r{params.replica_id}")
        try:
            with ConnectionScope(self.context.transport) as connections:
                summaries = self._read_summaries(connections)
                missing = [c for c in layout.column_ids if c not in summaries.column_ids]
                if summaries.summaries and missing:
                    raise TaskExecutionError(f"manifests lack columns {missing}")
                copied = self._copy_fragments(connections, summaries, partitions, folder)

            outputs: list[str] = []
            for done, partition in enumerate(partitions):
                self.check_task_canceled()
                outputs.extend(self._merge_partition(layout, partition, copied[partition.partition_id], folder))
                self.report_progress(0.5 + 0.5 * (done + 1) / max(len(partitions), 1))
            return outputs
        finally:
            shutil.rmtree(folder, ignore_errors=True)

    def _read_summaries(self, connections: ConnectionScope) -> RepartitionSummarySet:
        summaries: dict[int, RepartitionSummary] = {}
        for node_id, path in sorted((self.parameters.repartition_summary_file_map or {}).items()):
            if node_id == self.context.node_id:
                summaries[node_id] = read_summary(self.context.tmp_dir / path)
            else:
                data = connections.get(node_id).read_bytes(path, FileArea.TMP)
                summaries[node_id] = RepartitionSummary.from_json(data)
        return RepartitionSummarySet(summaries)

    def _copy_fragments(
        self,
        connections: ConnectionScope,
        summaries: RepartitionSummarySet,
        partitions: list,
        folder: Path,
    ) -> dict[int, list[dict[int, Path]]]:
        """Copy fragments locally; return partition id -> per-node column paths."""
        plan = [
            (partition, node_id, fragments)
            for partition in partitions
            for node_id, fragments in summaries.fragments_for(partition.range_index)
        ]
        copied: dict[int, list[dict[int, Path]]] = defaultdict(list)
        for done, (partition, node_id, fragments) in enumerate(plan):
            self.check_task_canceled()
            local: dict[int, Path] = {}
            for column_id, cf in fragments.items():
                dest = column_file_path(folder / str(partition.partition_id) / str(node_id), str(column_id))
                dest.parent.mkdir(parents=True, exist_ok=True)
                if node_id == self.context.node_id:
                    shutil.copyfile(column_file_path(self.context.tmp_dir, cf.local_path), dest)
                else:
                    data = connections.get(node_id).read_bytes(f"{cf.local_path}{EXTENSION}", FileArea.TMP)
                    dest.write_bytes(data)
                local[column_id] = dest
            copied[partition.partition_id].append(local)
            self.report_progress(0.5 * (done + 1) / len(plan))
        logger.info("fragments_copied", fragments=len(plan), partitions=len(partitions))
        return copied

    def _merge_partition(
        self,
        layout: ReplicaLayout,
        partition,
        fragments: list[dict[int, Path]],
        folder: Path,
    ) -> list[str]:
        repo = self.repository
        if not fragments:
            repo.update_replica_partition(
                partition.partition_id,
                status=ReplicaPartitionStatus.EMPTY,
                node_id=self.context.node_id,
            )
            logger.info("partition_recovered_empty", partition_id=partition.partition_id)
            return []

        inputs: list[dict[int, list[Any]]] = [
            {cid: read_column_file(paths[cid]).values for cid in layout.column_ids}
            for paths in fragments
        ]
        merger = PartitionMergerGeneral(
            layout.column_ids,
            layout.column_types,
            layout.compressions,
            layout.sort_column_id,
            folder / f"merged_{partition.partition_id}",
            value_index_stride=self.context.settings.value_index_stride,
            on_rows=self.checkpoint,
            check_every=self.check_every,
        )
        result = merger.merge(inputs)
        registered = register_temporary_files_as_column_files(
            repo, self.context.root_dir, partition.partition_id, result.files,
        )
        repo.update_replica_partition(
            partition.partition_id,
            status=ReplicaPartitionStatus.OK,
            node_id=self.context.node_id,
        )
        logger.info(
            "partition_recovered_from_fragments",
            partition_id=partition.partition_id,
            fragments=len(fragments),
            tuples=result.tuple_count,
        )
        return [cf.local_path for cf in registered]
