"""Task type registry.

Maps each :class:`~lvstore.core.models.TaskType` to the parameter class
that decodes its blob and a factory that builds its runner. Node workers
resolve runners here; an unknown tag yields ``None``, which the worker
reports as a task error instead of crashing.

Example:
    >>> registry = get_default_task_registry()
    >>> runner = registry.instantiate(TaskType.DELETE_TMP_FILES)
    >>> runner.init(context, task)
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable

from lvstore.core.models import TaskType
from lvstore.core.params import Parameters
from lvstore.tasks.base import TaskRunner

RunnerFactory = Callable[[], TaskRunner]


@dataclass(frozen=True)
class TaskRegistration:
    task_type: TaskType
    parameters_class: type[Parameters]
    factory: RunnerFactory


class TaskRunnerRegistry:
    """Registry of task runners keyed by task type."""

    def __init__(self) -> None:
        self._entries: dict[TaskType, TaskRegistration] = {}

    def register(
        self,
        task_type: TaskType,
        parameters_class: type[Parameters],
        factory: RunnerFactory,
    ) -> None:
        """Register a runner factory. Re-registering a type replaces it."""
        self._entries[task_type] = TaskRegistration(task_type, parameters_class, factory)

    def register_runner(self, runner_class: type[TaskRunner]) -> type[TaskRunner]:
        """Register a runner class by its ``task_type``; usable as a decorator."""
        self.register(runner_class.task_type, runner_class.parameters_class, runner_class)
        return runner_class

    def get(self, task_type: TaskType) -> TaskRegistration | None:
        return self._entries.get(task_type)

    def has(self, task_type: TaskType) -> bool:
        return task_type in self._entries

    def instantiate(self, task_type: TaskType | str) -> TaskRunner | None:
        """Build a fresh runner for *task_type*, or ``None`` if the tag is unknown."""
        try:
            task_type = TaskType(task_type)
        except ValueError:
            return None
        entry = self._entries.get(task_type)
        return entry.factory() if entry is not None else None

    def parameters_class(self, task_type: TaskType) -> type[Parameters] | None:
        entry = self._entries.get(task_type)
        return entry.parameters_class if entry is not None else None

    def list_task_types(self) -> list[TaskType]:
        return sorted(self._entries, key=lambda t: t.value)

    def unregister(self, task_type: TaskType) -> bool:
        return self._entries.pop(task_type, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def build_task_registry() -> TaskRunnerRegistry:
    """A registry holding every built-in task runner."""
    from lvstore.tasks.cleanup import DeletePartitionFilesTaskRunner, DeleteTmpFilesTaskRunner
    from lvstore.tasks.merge_same_scheme import MergePartitionSameSchemeTaskRunner
    from lvstore.tasks.recover_buddy import RecoverPartitionFromBuddyTaskRunner
    from lvstore.tasks.recover_repartitioned import (
        RecoverPartitionFromRepartitionedFilesTaskRunner,
    )
    from lvstore.tasks.repartition import RepartitionTaskRunner

    registry = TaskRunnerRegistry()
    for runner_class in (
        MergePartitionSameSchemeTaskRunner,
        RecoverPartitionFromBuddyTaskRunner,
        RepartitionTaskRunner,
        RecoverPartitionFromRepartitionedFilesTaskRunner,
        DeletePartitionFilesTaskRunner,
        DeleteTmpFilesTaskRunner,
    ):
        registry.register_runner(runner_class)
    return registry


_default_registry: TaskRunnerRegistry | None = None
_registry_lock = threading.Lock()


def get_default_task_registry() -> TaskRunnerRegistry:
    """Get the process-wide registry, built once on first use."""
    global _default_registry
    with _registry_lock:
        if _default_registry is None:
            _default_registry = build_task_registry()
        return _default_registry


def reset_default_task_registry() -> None:
    """Drop the process-wide registry (tests)."""
    global _default_registry
    with _registry_lock:
        _default_registry = None


__all__ = [
    "RunnerFactory",
    "TaskRegistration",
    "TaskRunnerRegistry",
    "build_task_registry",
    "get_default_task_registry",
    "reset_default_task_registry",
]
