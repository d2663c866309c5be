"""Node-side task runners, their registry, and the node worker."""

from lvstore.tasks.base import TaskRunner
from lvstore.tasks.context import DataEngineContext
from lvstore.tasks.registry import (
    TaskRunnerRegistry,
    get_default_task_registry,
    reset_default_task_registry,
)

__all__ = [
    "TaskRunner",
    "DataEngineContext",
    "TaskRunnerRegistry",
    "get_default_task_registry",
    "reset_default_task_registry",
]
