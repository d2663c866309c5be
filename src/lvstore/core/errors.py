"""
Structured error types for lvstore.

Every failure the orchestration engine deals with falls into one of four
families, and each family is handled at a different seam:

- **Task failures** end in the task record (status ERROR plus message) and
  reach the job only through the controller's polling loop.
- **Bookkeeping failures** (progress writes, cancellation broadcasts) are
  logged and the loop continues. ``best_effort`` is the single place this
  happens.
- **Decomposition failures** (bad job parameters, invalid preconditions)
  propagate to the caller of ``start_async`` / ``start_sync``.
- **Dispatch failures** (an uncaught exception in a job body) become job
  ERROR with the exception message.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        LVStoreError                          │
        │          (category, retryable, context, cause)               │
        ├──────────────────────────────────────────────────────────────┤
        │  RepositoryError      StorageError        TransportError     │
        │  EntityNotFoundError  ManifestError                          │
        │                                                              │
        │  ParameterEncodingError    InvalidTransitionError            │
        │                                                              │
        │  DecompositionError   TaskCanceledError   TaskExecutionError │
        │  RecoveryError                                               │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> err = EntityNotFoundError("task", 7)
    >>> err.category
    <ErrorCategory.REPOSITORY: 'REPOSITORY'>
    >>> err.with_context(job_id=3).context.job_id
    3

Tags:
    error-handling, exception-hierarchy, error-context, lvstore
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, TypeVar

T = TypeVar("T")


class ErrorCategory(str, Enum):
    """Error categories used for classification in logs."""

    REPOSITORY = "REPOSITORY"        # metadata repository reads/writes
    STORAGE = "STORAGE"              # column files, local disk
    TRANSPORT = "TRANSPORT"          # remote node connections
    VALIDATION = "VALIDATION"        # bad parameters, invalid transitions
    CONFIG = "CONFIG"
    ORCHESTRATION = "ORCHESTRATION"  # job decomposition, dispatch
    TASK = "TASK"                    # task execution, cancellation
    RECOVERY = "RECOVERY"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        job_id: Job being orchestrated when the error happened
        task_id: Task being executed
        node_id: Storage node involved
        partition_id: Replica partition involved
        metadata: Additional key-value pairs
    """

    job_id: int | None = None
    task_id: int | None = None
    node_id: int | None = None
    partition_id: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job_id", "task_id", "node_id", "partition_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class LVStoreError(Exception):
    """
    Base exception for all lvstore errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    raising sites only pass what differs from the family default.

    Examples:
        >>> error = LVStoreError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["retryable"]
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> LVStoreError:
        """Add context to this error (fluent API).

        Usage:
            raise RecoveryError("no source").with_context(partition_id=12)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# REPOSITORY / STORAGE / TRANSPORT
# =============================================================================


class RepositoryError(LVStoreError):
    """Metadata repository read or write failed."""

    default_category = ErrorCategory.REPOSITORY
    default_retryable = True


class EntityNotFoundError(RepositoryError):
    """Requested entity does not exist in the repository."""

    default_retryable = False

    def __init__(self, kind: str, entity_id: Any, **kwargs: Any):
        super().__init__(f"{kind} {entity_id} not found", **kwargs)
        self.kind = kind
        self.entity_id = entity_id


class StorageError(LVStoreError):
    """Column file could not be read, written, moved or deleted."""

    default_category = ErrorCategory.STORAGE


class ManifestError(StorageError):
    """Repartition manifest could not be published or parsed."""


class TransportError(LVStoreError):
    """Remote node connection could not be opened or used."""

    default_category = ErrorCategory.TRANSPORT
    default_retryable = True


# =============================================================================
# VALIDATION
# =============================================================================


class ParameterEncodingError(LVStoreError):
    """Parameter blob is truncated or malformed."""

    default_category = ErrorCategory.VALIDATION


class InvalidTransitionError(LVStoreError):
    """Raised when a status transition is not allowed."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, current: str, target: str, enum_name: str = "status"):
        self.current = current
        self.target = target
        super().__init__(f"Invalid {enum_name} transition: {current} → {target}")


# =============================================================================
# ORCHESTRATION
# =============================================================================


class DecompositionError(LVStoreError):
    """Job could not be broken into tasks. Propagates to the caller."""

    default_category = ErrorCategory.ORCHESTRATION


class TaskCanceledError(LVStoreError):
    """Raised inside a task runner when its task was asked to cancel."""

    default_category = ErrorCategory.TASK

    def __init__(self, task_id: int | None = None, message: str | None = None):
        super().__init__(message or f"task {task_id} canceled")
        self.context.task_id = task_id


class TaskExecutionError(LVStoreError):
    """Task runner could not complete its work."""

    default_category = ErrorCategory.TASK


class RecoveryError(LVStoreError):
    """Recovery precondition or step failed."""

    default_category = ErrorCategory.RECOVERY


# =============================================================================
# BEST-EFFORT BRANCH
# =============================================================================


@dataclass
class SecondaryFailure:
    """A failure that was logged and deliberately not propagated."""

    operation: str
    error: Exception
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "error_type": type(self.error).__name__,
            "error": str(self.error),
            **self.context,
        }


def best_effort(
    operation: str,
    fn: Callable[[], T],
    *,
    logger: Any,
    failures: list[SecondaryFailure] | None = None,
    **context: Any,
) -> T | None:
    """Run ``fn``; on failure log it, record it and return ``None``.

    Used for writes whose failure must not abort the enclosing work: progress
    updates, cancellation broadcasts, and status reports made while already
    handling another error.
    """
    try:
        return fn()
    except Exception as exc:
        failure = SecondaryFailure(operation=operation, error=exc, context=context)
        if failures is not None:
            failures.append(failure)
        logger.warning("secondary_failure", **failure.to_dict(), exc_info=True)
        return None


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "LVStoreError",
    "RepositoryError",
    "EntityNotFoundError",
    "StorageError",
    "ManifestError",
    "TransportError",
    "ParameterEncodingError",
    "InvalidTransitionError",
    "DecompositionError",
    "TaskCanceledError",
    "TaskExecutionError",
    "RecoveryError",
    "SecondaryFailure",
    "best_effort",
]
