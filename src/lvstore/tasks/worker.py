"""Data-node worker: polls for this node's tasks and runs them.

Every ``node_polling_interval_ms`` the worker reads the tasks assigned to
its node that are START_REQUESTED, builds a runner for each through the
task registry, marks the task RUNNING and hands the runner to a bounded
thread pool. Tasks that were asked to cancel before they ever started are
acknowledged as CANCELED so that controllers waiting on them can finish.

Usage (programmatic)::

    worker = DataTaskWorker(context)
    worker.start_background()
    ...
    worker.shutdown()

Usage (CLI)::

    lvstore node start --node-id 3
"""

from __future__ import annotations

import signal
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from lvstore.core.errors import InvalidTransitionError, best_effort
from lvstore.core.logging import LogContext, get_logger
from lvstore.core.models import Task, TaskStatus, utcnow
from lvstore.tasks.base import TaskRunner
from lvstore.tasks.context import DataEngineContext
from lvstore.tasks.registry import TaskRunnerRegistry, get_default_task_registry

logger = get_logger(__name__)


@dataclass
class WorkerStats:
    """Aggregate statistics for a node worker."""

    polls: int = 0
    tasks_started: int = 0
    tasks_rejected: int = 0
    tasks_canceled_before_start: int = 0
    last_poll_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "polls": self.polls,
            "tasks_started": self.tasks_started,
            "tasks_rejected": self.tasks_rejected,
            "tasks_canceled_before_start": self.tasks_canceled_before_start,
            "last_poll_at": self.last_poll_at.isoformat() if self.last_poll_at else None,
        }


class DataTaskWorker:
    """Polls the repository for this node's tasks and executes them.

    Thread-safety:
        The poll loop is single-threaded so a task is never dispatched
        twice; runners execute concurrently on the pool.
    """

    def __init__(
        self,
        context: DataEngineContext,
        *,
        registry: TaskRunnerRegistry | None = None,
        poll_interval_ms: int | None = None,
        max_workers: int | None = None,
    ):
        self.context = context
        self._registry = registry if registry is not None else get_default_task_registry()
        self._poll_interval = (
            poll_interval_ms
            if poll_interval_ms is not None
            else context.settings.node_polling_interval_ms
        ) / 1000.0
        self._max_workers = max_workers or context.settings.node_task_workers
        self._shutdown = threading.Event()
        self._stopped = threading.Event()
        self._stats = WorkerStats()
        self._pool = ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix=f"lvstore-node{context.node_id}",
        )
        # node must exist before it can receive tasks
        context.repository.get_rack_node(context.node_id)

    @property
    def node_id(self) -> int:
        return self.context.node_id

    @property
    def stats(self) -> WorkerStats:
        return self._stats

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Run the poll loop (blocking). Installs SIGINT / SIGTERM handlers."""
        logger.info(
            "node_worker_starting",
            node_id=self.node_id,
            poll_interval=self._poll_interval,
            workers=self._max_workers,
        )
        try:
            signal.signal(signal.SIGINT, self._handle_signal)
            signal.signal(signal.SIGTERM, self._handle_signal)
        except (ValueError, OSError):
            pass  # not in main thread

        try:
            with LogContext(node_id=self.node_id):
                self._run_loop()
        finally:
            self._stopped.set()
            logger.info("node_worker_stopped", node_id=self.node_id, **self._stats.to_dict())

    def start_background(self) -> threading.Thread:
        """Start the worker in a daemon thread. Returns the thread."""
        t = threading.Thread(
            target=self.start,
            name=f"lvstore-node{self.node_id}-poll",
            daemon=True,
        )
        t.start()
        return t

    def shutdown(self, wait: bool = True) -> None:
        """Stop polling and ask every queued or running task of this node to cancel."""
        logger.info("node_worker_shutting_down", node_id=self.node_id)
        self._shutdown.set()
        for status in (TaskStatus.START_REQUESTED, TaskStatus.RUNNING):
            tasks = best_effort(
                "list_tasks_for_shutdown",
                lambda status=status: self.context.repository.get_all_tasks_by_node_and_status(
                    self.node_id, status,
                ),
                logger=logger,
                node_id=self.node_id,
            )
            for task in tasks or []:
                best_effort(
                    "request_task_cancel",
                    lambda task=task: self.context.repository.update_task(
                        task.task_id, status=TaskStatus.CANCEL_REQUESTED,
                    ),
                    logger=logger,
                    node_id=self.node_id,
                    task_id=task.task_id,
                )
        self._pool.shutdown(wait=wait)

    def is_stopped(self) -> bool:
        return self._stopped.is_set()

    # ------------------------------------------------------------------ #
    # Main loop
    # ------------------------------------------------------------------ #

    def _run_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("node_worker_poll_error", node_id=self.node_id)
            self._shutdown.wait(self._poll_interval)

    def poll_once(self) -> int:
        """Dispatch every START_REQUESTED task of this node. Returns how many started."""
        repo = self.context.repository
        self._stats.polls += 1
        self._stats.last_poll_at = utcnow()

        for task in repo.get_all_tasks_by_node_and_status(self.node_id, TaskStatus.CANCEL_REQUESTED):
            if task.started_at is None:
                repo.update_task(task.task_id, status=TaskStatus.CANCELED)
                self._stats.tasks_canceled_before_start += 1
                logger.info("task_canceled_before_start", task_id=task.task_id)

        started = 0
        for task in repo.get_all_tasks_by_node_and_status(self.node_id, TaskStatus.START_REQUESTED):
            if self._shutdown.is_set():
                break
            runner = self._prepare(task)
            if runner is None:
                continue
            try:
                repo.update_task(task.task_id, status=TaskStatus.RUNNING)
            except InvalidTransitionError:
                # canceled between the listing and now; acknowledged next poll
                logger.info("task_start_superseded", task_id=task.task_id)
                continue
            self._pool.submit(runner.run)
            self._stats.tasks_started += 1
            started += 1
        if started:
            logger.debug("node_worker_dispatched", node_id=self.node_id, tasks=started)
        return started

    def _prepare(self, task: Task) -> TaskRunner | None:
        runner = self._registry.instantiate(task.task_type)
        if runner is None:
            message = f"unexpected task type: {task.task_type}"
        else:
            try:
                runner.init(self.context, task)
                return runner
            except Exception as exc:
                message = f"cannot initialize task {task.task_id}: {exc}"
        logger.error("task_rejected", task_id=task.task_id, error=message)
        self.context.repository.update_task(
            task.task_id, status=TaskStatus.ERROR, error_messages=message,
        )
        self._stats.tasks_rejected += 1
        return None

    def _handle_signal(self, signum, frame):
        logger.info("node_worker_signal", node_id=self.node_id, signal=signum)
        self._shutdown.set()


__all__ = ["WorkerStats", "DataTaskWorker"]
