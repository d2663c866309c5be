"""Job orchestration: the controller state machine and task polling."""

from lvstore.execution.controller import (
    CancellationToken,
    JobController,
    get_controller_pool,
    shutdown_controller_pool,
)

__all__ = [
    "CancellationToken",
    "JobController",
    "get_controller_pool",
    "shutdown_controller_pool",
]
