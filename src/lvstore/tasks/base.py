"""Task runner contract.

A task runner executes one task on one node. Subclasses implement
:meth:`TaskRunner.run_task` and return the task's output paths;
:meth:`TaskRunner.run` wraps it with the status protocol:

* cancellation is checked before any work starts;
* on success the task becomes DONE with progress 1.0 and its output paths;
* :class:`~lvstore.core.errors.TaskCanceledError` makes it CANCELED;
* any other exception makes it ERROR with the exception message.

``run`` never raises. A failure while reporting the outcome is logged and
recorded as a secondary failure. A runner only ever writes its own task.
"""

from __future__ import annotations

import traceback
from abc import ABC, abstractmethod
from typing import ClassVar, Generic, TypeVar

from lvstore.core.errors import SecondaryFailure, TaskCanceledError, best_effort
from lvstore.core.logging import LogContext, get_logger
from lvstore.core.models import Task, TaskStatus, TaskType
from lvstore.core.params import Parameters
from lvstore.tasks.context import DataEngineContext

logger = get_logger(__name__)

P = TypeVar("P", bound=Parameters)


class TaskRunner(ABC, Generic[P]):
    """Base class of every node-side task."""

    task_type: ClassVar[TaskType]
    parameters_class: ClassVar[type[Parameters]]

    def __init__(self) -> None:
        self.context: DataEngineContext | None = None
        self.task: Task | None = None
        self.parameters: P | None = None
        self.secondary_failures: list[SecondaryFailure] = []

    def init(self, context: DataEngineContext, task: Task) -> None:
        """Bind the runner to its node and task and decode the parameters."""
        self.context = context
        self.task = task
        self.parameters = self.parameters_class.from_bytes(task.parameters)

    @property
    def repository(self):
        return self.context.repository

    @abstractmethod
    def run_task(self) -> list[str]:
        """Do the work; return output paths. Raise TaskCanceledError to stop early."""

    def run(self) -> None:
        task_id = self.task.task_id
        with LogContext(task_id=task_id, node_id=self.context.node_id, job_id=self.task.job_id):
            try:
                self.check_task_canceled()
                logger.info("task_started", task_type=self.task.task_type.value)
                output_paths = self.run_task()
                self.repository.update_task(
                    task_id,
                    status=TaskStatus.DONE,
                    progress=1.0,
                    output_paths=output_paths,
                )
                logger.info("task_done", outputs=len(output_paths))
            except TaskCanceledError:
                logger.info("task_canceled")
                self._report(TaskStatus.CANCELED, None)
            except Exception as exc:
                logger.error("task_failed", error=str(exc), exc_info=True)
                self._report(
                    TaskStatus.ERROR,
                    f"{type(exc).__name__}: {exc}\n{traceback.format_exc(limit=8)}",
                )

    def _report(self, status: TaskStatus, error_messages: str | None) -> None:
        best_effort(
            "report_task_status",
            lambda: self.repository.update_task(
                self.task.task_id, status=status, error_messages=error_messages,
            ),
            logger=logger,
            failures=self.secondary_failures,
            task_id=self.task.task_id,
            status=status.value,
        )

    def check_task_canceled(self) -> None:
        """Raise :class:`TaskCanceledError` if this task was asked to cancel.

        A failure to read the task record is treated as a cancellation.
        """
        try:
            current = self.repository.get_task(self.task.task_id)
        except Exception as exc:
            logger.warning("task_status_unreadable", error=str(exc))
            raise TaskCanceledError(
                self.task.task_id, f"task {self.task.task_id} status unreadable: {exc}",
            ) from exc
        if current.status == TaskStatus.CANCEL_REQUESTED:
            raise TaskCanceledError(self.task.task_id)

    def report_progress(self, progress: float) -> None:
        best_effort(
            "report_task_progress",
            lambda: self.repository.update_task(self.task.task_id, progress=progress),
            logger=logger,
            failures=self.secondary_failures,
            task_id=self.task.task_id,
        )

    def checkpoint(self, rows: int) -> None:
        """Row-count callback for long loops; checks for cancellation."""
        self.check_task_canceled()

    @property
    def check_every(self) -> int:
        return self.context.settings.cancel_check_rows


__all__ = ["TaskRunner"]
