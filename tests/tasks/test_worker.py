"""Tests for the node task worker."""

from __future__ import annotations

import threading

import pytest

from lvstore.core.errors import EntityNotFoundError
from lvstore.core.models import JobType, TaskStatus, TaskType
from lvstore.tasks.cleanup import DeleteTmpFilesTaskRunner
from lvstore.tasks.params import DeleteTmpFilesTaskParameters
from lvstore.tasks.registry import TaskRunnerRegistry
from lvstore.tasks.worker import DataTaskWorker
from tests._support.cluster import wait_for


@pytest.fixture
def node(cluster):
    return cluster.node_ids[0]


@pytest.fixture
def worker(cluster, node):
    w = DataTaskWorker(cluster.context(node), poll_interval_ms=5, max_workers=2)
    yield w
    w.shutdown(wait=True)


def _queue(cluster, node, task_type=TaskType.DELETE_TMP_FILES, parameters=None):
    repo = cluster.repo
    job = repo.create_job(JobType.MERGE_FRACTURE)
    if parameters is None:
        parameters = DeleteTmpFilesTaskParameters(paths=[]).to_bytes()
    return repo.create_task(job.job_id, node, task_type, parameters, TaskStatus.START_REQUESTED)


def _status(cluster, task_id):
    return cluster.repo.get_task(task_id).status


class TestPollOnce:
    """Dispatch of START_REQUESTED tasks."""

    def test_runs_queued_task(self, cluster, node, worker):
        task = _queue(cluster, node)
        assert worker.poll_once() == 1
        wait_for(lambda: _status(cluster, task.task_id) == TaskStatus.DONE)
        assert worker.stats.tasks_started == 1
        assert cluster.repo.get_task(task.task_id).started_at is not None

    def test_ignores_other_nodes(self, cluster, node, worker):
        task = _queue(cluster, cluster.node_ids[1])
        assert worker.poll_once() == 0
        assert _status(cluster, task.task_id) == TaskStatus.START_REQUESTED

    def test_task_is_dispatched_once(self, cluster, node, worker):
        _queue(cluster, node)
        assert worker.poll_once() == 1
        assert worker.poll_once() == 0

    def test_unknown_task_type_becomes_error(self, cluster, node):
        w = DataTaskWorker(cluster.context(node), registry=TaskRunnerRegistry(), poll_interval_ms=5)
        try:
            task = _queue(cluster, node)
            assert w.poll_once() == 0
            failed = cluster.repo.get_task(task.task_id)
            assert failed.status == TaskStatus.ERROR
            assert "unexpected task type" in failed.error_messages
            assert w.stats.tasks_rejected == 1
        finally:
            w.shutdown()

    def test_restricted_registry_rejects_other_types(self, cluster, node):
        registry = TaskRunnerRegistry()
        registry.register_runner(DeleteTmpFilesTaskRunner)
        w = DataTaskWorker(cluster.context(node), registry=registry, poll_interval_ms=5)
        try:
            accepted = _queue(cluster, node)
            rejected = _queue(cluster, node, task_type=TaskType.DELETE_PARTITION_FILES)
            assert w.poll_once() == 1
            wait_for(lambda: _status(cluster, accepted.task_id) == TaskStatus.DONE)
            assert _status(cluster, rejected.task_id) == TaskStatus.ERROR
            assert w.stats.tasks_rejected == 1
        finally:
            w.shutdown(wait=True)

    def test_undecodable_parameters_become_error(self, cluster, node, worker):
        task = _queue(cluster, node, parameters=b"\x00")
        worker.poll_once()
        failed = cluster.repo.get_task(task.task_id)
        assert failed.status == TaskStatus.ERROR
        assert "cannot initialize" in failed.error_messages

    def test_cancel_before_start_is_acknowledged(self, cluster, node, worker):
        task = _queue(cluster, node)
        cluster.repo.update_task(task.task_id, status=TaskStatus.CANCEL_REQUESTED)
        assert worker.poll_once() == 0
        assert _status(cluster, task.task_id) == TaskStatus.CANCELED
        assert worker.stats.tasks_canceled_before_start == 1

    def test_started_task_is_left_to_its_runner(self, cluster, node):
        """A CANCEL_REQUESTED task that already started is not touched by the poll."""
        release = threading.Event()

        class Blocking(DeleteTmpFilesTaskRunner):
            def run_task(self):
                release.wait(5)
                self.check_task_canceled()
                return []

        registry = TaskRunnerRegistry()
        registry.register_runner(Blocking)
        w = DataTaskWorker(cluster.context(node), registry=registry, poll_interval_ms=5)
        try:
            task = _queue(cluster, node)
            w.poll_once()
            cluster.repo.update_task(task.task_id, status=TaskStatus.CANCEL_REQUESTED)
            w.poll_once()
            assert _status(cluster, task.task_id) == TaskStatus.CANCEL_REQUESTED
            release.set()
            wait_for(lambda: _status(cluster, task.task_id) == TaskStatus.CANCELED)
        finally:
            release.set()
            w.shutdown()


class TestLifecycle:
    """Background loop and shutdown."""

    def test_unknown_node_rejected(self, cluster, node):
        ctx = cluster.context(node)
        ctx.node_id = 999
        with pytest.raises(EntityNotFoundError):
            DataTaskWorker(ctx)

    def test_background_loop_picks_up_tasks(self, cluster, node, worker):
        thread = worker.start_background()
        task = _queue(cluster, node)
        wait_for(lambda: _status(cluster, task.task_id) == TaskStatus.DONE)
        worker.shutdown()
        thread.join(timeout=5)
        assert worker.is_stopped()
        assert worker.stats.polls >= 1

    def test_shutdown_requests_cancel_of_queued_tasks(self, cluster, node, worker):
        task = _queue(cluster, node)
        worker.shutdown()
        assert _status(cluster, task.task_id) == TaskStatus.CANCEL_REQUESTED
