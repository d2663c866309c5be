"""Job controller: the state machine every job runs through.

A job is decomposed into tasks that run on storage nodes. The controller
never talks to nodes directly; it writes task records, then polls the
repository until every task has finished, and finally writes the job's
terminal status.

::

    start_async / start_sync
        │  _init_job(params)             decomposition, errors propagate
        ▼
    _run()                               pool worker or caller thread
        │  job → RUNNING
        │  _run_job()                    job-specific dispatch
        │     └─ join_tasks(...)         poll, progress, error fan-out
        ▼
    job → ERROR | CANCELED | DONE        first match wins, in that order

Cancellation is cooperative. ``request_stop`` only sets the controller's
:class:`CancellationToken`; ``stop`` additionally records the request on
the job and waits a bounded time for ``_run`` to exit.

Bookkeeping writes made while polling (progress, cancellation broadcasts)
go through :func:`~lvstore.core.errors.best_effort`: a failing write is
logged and the loop carries on with its next tick.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Generic, Iterable, Mapping, TypeVar

from lvstore.core.errors import (
    DecompositionError,
    InvalidTransitionError,
    SecondaryFailure,
    best_effort,
)
from lvstore.core.logging import LogContext, get_logger
from lvstore.core.models import Job, JobStatus, JobType, Task, TaskStatus
from lvstore.core.params import Parameters
from lvstore.core.repository import MetadataRepository
from lvstore.core.settings import LVStoreSettings, get_settings

logger = get_logger(__name__)

P = TypeVar("P", bound=Parameters)

STOP_POLL_INTERVAL_SECONDS = 0.03


class CancellationToken:
    """Thread-safe, one-way cancellation flag that sleepers can wait on."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to *timeout* seconds; return early (True) once cancelled."""
        return self._event.wait(timeout)


# --------------------------------------------------------------------------- #
# Shared bounded pool for asynchronous jobs
# --------------------------------------------------------------------------- #

_pool: ThreadPoolExecutor | None = None
_pool_lock = threading.Lock()


def get_controller_pool() -> ThreadPoolExecutor:
    """Return the process-wide pool that runs ``start_async`` jobs."""
    global _pool
    with _pool_lock:
        if _pool is None:
            _pool = ThreadPoolExecutor(
                max_workers=get_settings().controller_pool_size,
                thread_name_prefix="lvstore-job",
            )
        return _pool


def shutdown_controller_pool(wait: bool = True) -> None:
    global _pool
    with _pool_lock:
        pool, _pool = _pool, None
    if pool is not None:
        pool.shutdown(wait=wait)


def describe_error(exc: BaseException) -> str:
    """The ``error_messages`` text stored for a job that failed with ``exc``."""
    return f"{type(exc).__name__}: {exc}"


# --------------------------------------------------------------------------- #
# JobController
# --------------------------------------------------------------------------- #


class JobController(ABC, Generic[P]):
    """Base class of every job. Subclasses implement decomposition and dispatch.

    A controller instance drives exactly one job.

    Args:
        repository: Metadata repository shared with the nodes
        settings: Timing defaults; falls back to the process settings
        pool: Executor for ``start_async``; defaults to the shared bounded pool
        stop_max_wait_ms: Bound on how long ``stop`` waits (default 3000)
        task_join_interval_ms: Poll interval of ``join_tasks`` (default 5000)
        task_join_interval_on_error_ms: Poll interval after a task failed (default 500)
    """

    job_type: JobType

    def __init__(
        self,
        repository: MetadataRepository,
        settings: LVStoreSettings | None = None,
        *,
        pool: ThreadPoolExecutor | None = None,
        stop_max_wait_ms: int | None = None,
        task_join_interval_ms: int | None = None,
        task_join_interval_on_error_ms: int | None = None,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self._pool = pool
        self.stop_max_wait_ms = (
            stop_max_wait_ms if stop_max_wait_ms is not None else self.settings.stop_max_wait_ms
        )
        self.task_join_interval_ms = (
            task_join_interval_ms
            if task_join_interval_ms is not None
            else self.settings.task_join_interval_ms
        )
        self.task_join_interval_on_error_ms = (
            task_join_interval_on_error_ms
            if task_join_interval_on_error_ms is not None
            else self.settings.task_join_interval_on_error_ms
        )

        self.job_id = 0
        self.params: P | None = None
        self.token = CancellationToken()
        self.secondary_failures: list[SecondaryFailure] = []

        self._started = False
        self._stopped = threading.Event()
        self._error = False
        self._error_messages: str | None = None
        self._task_snapshots: dict[int, Task] = {}
        self._future: Future | None = None

    # ------------------------------------------------------------------ #
    # Subclass hooks
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _init_job(self, params: P) -> Job:
        """Validate *params* and create the job record (use ``_create_job``)."""

    @abstractmethod
    def _run_job(self) -> None:
        """Create tasks, join them, and apply the job's effects."""

    def _create_job(self, description: str) -> Job:
        job = self.repository.create_job(
            self.job_type,
            description=description,
            parameters=self.params.to_bytes() if self.params is not None else b"",
        )
        self.job_id = job.job_id
        return job

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start_async(self, params: P) -> Job:
        """Decompose on the caller's thread, then run on the controller pool."""
        job = self._decompose(params)
        pool = self._pool or get_controller_pool()
        self._future = pool.submit(self._run)
        return job

    def start_sync(self, params: P) -> Job:
        """Decompose and run on the caller's thread; return the finished job."""
        self._decompose(params)
        self._run()
        return self.repository.get_job(self.job_id)

    def request_stop(self) -> None:
        """Ask the job to stop at its next poll. No repository write."""
        self.token.cancel()

    def stop(self) -> bool:
        """Request a stop and wait up to ``stop_max_wait_ms`` for the job to exit.

        Returns whether the job stopped within the bound.
        """
        self.request_stop()
        if self.job_id:
            best_effort(
                "request_job_cancel",
                lambda: self.repository.update_job(self.job_id, status=JobStatus.CANCEL_REQUESTED),
                logger=logger,
                failures=self.secondary_failures,
                job_id=self.job_id,
            )
        deadline = time.monotonic() + self.stop_max_wait_ms / 1000.0
        while not self.is_stopped():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(
                    "job_stop_timed_out", job_id=self.job_id, waited_ms=self.stop_max_wait_ms,
                )
                return False
            self._stopped.wait(min(STOP_POLL_INTERVAL_SECONDS, remaining))
        return True

    def is_stopped(self) -> bool:
        """True once ``_run`` has exited (or the job never started)."""
        return not self._started or self._stopped.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until ``_run`` exits; return whether it did within *timeout* seconds."""
        return self._stopped.wait(timeout) if self._started else True

    @property
    def error_messages(self) -> str | None:
        return self._error_messages

    @property
    def task_snapshots(self) -> dict[int, Task]:
        """Copy of the latest task snapshots seen by ``join_tasks``."""
        return {task_id: task.copy() for task_id, task in self._task_snapshots.items()}

    def _decompose(self, params: P) -> Job:
        if self._started:
            raise DecompositionError("a job controller runs exactly one job")
        self.params = params
        try:
            job = self._init_job(params)
        except Exception as exc:
            if self.job_id:
                self._record_error(describe_error(exc))
                best_effort(
                    "mark_job_error",
                    lambda: self.repository.update_job(
                        self.job_id, status=JobStatus.ERROR, error_messages=self._error_messages,
                    ),
                    logger=logger,
                    failures=self.secondary_failures,
                    job_id=self.job_id,
                )
            if isinstance(exc, DecompositionError):
                raise
            raise DecompositionError(f"job decomposition failed: {exc}", cause=exc) from exc
        if job is None or not job.job_id:
            raise DecompositionError("job decomposition did not assign a job id")
        self.job_id = job.job_id
        self._started = True
        logger.info("job_created", job_id=self.job_id, job_type=self.job_type.value)
        return job

    # ------------------------------------------------------------------ #
    # Run
    # ------------------------------------------------------------------ #

    def _run(self) -> None:
        with LogContext(job_id=self.job_id):
            try:
                self._mark_running()
                if not self.token.is_cancelled:
                    self._run_job()
                self._finish()
            except Exception as exc:
                logger.exception("job_failed", job_id=self.job_id)
                self._record_error(describe_error(exc))
                best_effort(
                    "mark_job_error",
                    lambda: self.repository.update_job(
                        self.job_id, status=JobStatus.ERROR, error_messages=self._error_messages,
                    ),
                    logger=logger,
                    failures=self.secondary_failures,
                    job_id=self.job_id,
                )
            finally:
                self._stopped.set()

    def _mark_running(self) -> None:
        try:
            self.repository.update_job(self.job_id, status=JobStatus.RUNNING)
        except InvalidTransitionError:
            # stop() may already have recorded CANCEL_REQUESTED
            if not self.token.is_cancelled:
                raise
        logger.info("job_running", job_id=self.job_id)

    def _finish(self) -> None:
        if self._error:
            status, progress = JobStatus.ERROR, None
        elif self.token.is_cancelled:
            status, progress = JobStatus.CANCELED, None
        else:
            status, progress = JobStatus.DONE, 1.0
        self.repository.update_job(
            self.job_id,
            status=status,
            progress=progress,
            error_messages=self._error_messages if self._error else None,
        )
        logger.info("job_finished", job_id=self.job_id, status=status.value)

    def _record_error(self, message: str) -> None:
        """Flag the job as failed. The first message recorded is kept."""
        self._error = True
        if self._error_messages is None:
            self._error_messages = message

    @property
    def has_error(self) -> bool:
        return self._error

    # ------------------------------------------------------------------ #
    # Task polling
    # ------------------------------------------------------------------ #

    def join_tasks(
        self,
        tasks: Mapping[int, Task] | Iterable[Task],
        base_progress: float,
        completed_progress: float,
    ) -> dict[int, Task]:
        """Poll *tasks* until all finish or a stop is requested.

        Progress moves from *base_progress* to *completed_progress* in
        proportion to the number of finished tasks. The first failed task
        marks the job as failed, shortens the poll interval, and makes every
        unfinished task receive CANCEL_REQUESTED; the loop then keeps polling
        until all tasks have finished. A stop request broadcasts the same
        cancellation and returns without waiting for confirmation.

        Returns the final task snapshots keyed by task id.
        """
        items = tasks.values() if isinstance(tasks, Mapping) else tasks
        # owned by this loop; snapshots are replaced, never mutated
        owned: dict[int, Task] = {t.task_id: t.copy() for t in items}
        self._task_snapshots = owned
        total = len(owned)
        finished = sum(1 for t in owned.values() if t.status.is_finished)
        logger.info(
            "join_tasks_started", job_id=self.job_id, tasks=total,
            base_progress=base_progress, completed_progress=completed_progress,
        )

        while finished < total:
            if self.token.is_cancelled:
                logger.info("join_tasks_stop_requested", job_id=self.job_id)
                self._broadcast_cancel(owned)
                return dict(owned)

            interval_ms = (
                self.task_join_interval_on_error_ms if self._error else self.task_join_interval_ms
            )
            if self.token.wait(interval_ms / 1000.0):
                continue

            for task_id, snapshot in list(owned.items()):
                if snapshot.status.is_finished:
                    continue
                fresh = best_effort(
                    "poll_task",
                    lambda task_id=task_id: self.repository.get_task(task_id),
                    logger=logger,
                    failures=self.secondary_failures,
                    job_id=self.job_id,
                    task_id=task_id,
                )
                if fresh is None:
                    continue
                if fresh.status != snapshot.status:
                    logger.info(
                        "task_status_changed",
                        task_id=task_id,
                        node_id=fresh.node_id,
                        old_status=snapshot.status.value,
                        new_status=fresh.status.value,
                    )
                owned[task_id] = fresh
                if not fresh.status.is_finished:
                    continue

                finished += 1
                progress = base_progress + (completed_progress - base_progress) * finished / total
                best_effort(
                    "update_job_progress",
                    lambda progress=progress: self.repository.update_job(self.job_id, progress=progress),
                    logger=logger,
                    failures=self.secondary_failures,
                    job_id=self.job_id,
                )
                if fresh.status == TaskStatus.ERROR and not self._error:
                    logger.error(
                        "task_failed", task_id=task_id, node_id=fresh.node_id,
                        error=fresh.error_messages,
                    )
                    self._record_error(
                        fresh.error_messages or f"task {task_id} on node {fresh.node_id} failed"
                    )

            if self._error:
                self._broadcast_cancel(owned)
            else:
                self._check_job_cancel_requested()

        logger.info("join_tasks_finished", job_id=self.job_id, tasks=total)
        return dict(owned)

    def _broadcast_cancel(self, owned: dict[int, Task]) -> None:
        for task_id, snapshot in list(owned.items()):
            if snapshot.status.is_finished or snapshot.status == TaskStatus.CANCEL_REQUESTED:
                continue
            updated = best_effort(
                "request_task_cancel",
                lambda task_id=task_id: self.repository.update_task(
                    task_id, status=TaskStatus.CANCEL_REQUESTED,
                ),
                logger=logger,
                failures=self.secondary_failures,
                job_id=self.job_id,
                task_id=task_id,
            )
            if updated is not None:
                owned[task_id] = updated

    def _check_job_cancel_requested(self) -> None:
        """Honor a CANCEL_REQUESTED written to the job record by another process."""
        job = best_effort(
            "poll_job",
            lambda: self.repository.get_job(self.job_id),
            logger=logger,
            failures=self.secondary_failures,
            job_id=self.job_id,
        )
        if job is not None and job.status == JobStatus.CANCEL_REQUESTED and not self.token.is_cancelled:
            logger.info("job_cancel_requested_externally", job_id=self.job_id)
            self.request_stop()

    # ------------------------------------------------------------------ #
    # Helpers for subclasses
    # ------------------------------------------------------------------ #

    def _request_start(self, tasks: list[Task]) -> list[Task]:
        """Move freshly created tasks to START_REQUESTED so nodes pick them up."""
        return [
            self.repository.update_task(task.task_id, status=TaskStatus.START_REQUESTED)
            for task in tasks
        ]

    def _all_done(self, tasks: Mapping[int, Task]) -> bool:
        return all(t.status == TaskStatus.DONE for t in tasks.values())


__all__ = [
    "STOP_POLL_INTERVAL_SECONDS",
    "CancellationToken",
    "get_controller_pool",
    "shutdown_controller_pool",
    "describe_error",
    "JobController",
]
