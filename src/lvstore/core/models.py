"""Entity model: jobs, tasks, tables, fractures, replicas and column files.

All entities are plain dataclasses identified by an integer id that is
unique per entity type. References between entities are ids, never object
links, so a record read from the repository is always a detached snapshot.

Job / task state machine::

    CREATED          → START_REQUESTED | RUNNING | CANCEL_REQUESTED | CANCELED | ERROR
    START_REQUESTED  → RUNNING | CANCEL_REQUESTED | CANCELED | ERROR
    RUNNING          → DONE | ERROR | CANCEL_REQUESTED | CANCELED
    CANCEL_REQUESTED → CANCELED | DONE | ERROR
    DONE, ERROR, CANCELED → (terminal)

A task that is CANCEL_REQUESTED may still finish DONE or ERROR if it
completes before it next checks for cancellation.
"""

from __future__ import annotations

import base64
import bisect
import dataclasses
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Callable, ClassVar

from lvstore.core.errors import InvalidTransitionError


def utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


# =============================================================================
# STATUS ENUMS
# =============================================================================


class JobStatus(str, Enum):
    """Lifecycle of a job."""

    CREATED = "CREATED"
    START_REQUESTED = "START_REQUESTED"
    RUNNING = "RUNNING"
    DONE = "DONE"
    ERROR = "ERROR"
    CANCEL_REQUESTED = "CANCEL_REQUESTED"
    CANCELED = "CANCELED"

    @property
    def is_finished(self) -> bool:
        return self in _FINISHED_JOB


class TaskStatus(str, Enum):
    """Lifecycle of a task. Mirrors :class:`JobStatus`."""

    CREATED = "CREATED"
    START_REQUESTED = "START_REQUESTED"
    RUNNING = "RUNNING"
    DONE = "DONE"
    ERROR = "ERROR"
    CANCEL_REQUESTED = "CANCEL_REQUESTED"
    CANCELED = "CANCELED"

    @property
    def is_finished(self) -> bool:
        return self in _FINISHED_TASK


_FINISHED_JOB = frozenset({JobStatus.DONE, JobStatus.ERROR, JobStatus.CANCELED})
_FINISHED_TASK = frozenset({TaskStatus.DONE, TaskStatus.ERROR, TaskStatus.CANCELED})


def _transitions(enum: type[Enum]) -> dict[Any, frozenset[Any]]:
    s = enum
    return {
        s.CREATED: frozenset({
            s.START_REQUESTED,
            s.RUNNING,
            s.CANCEL_REQUESTED,
            s.CANCELED,
            s.ERROR,  # decomposition failed after the record was created
        }),
        s.START_REQUESTED: frozenset({
            s.RUNNING,
            s.CANCEL_REQUESTED,
            s.CANCELED,
            s.ERROR,  # node could not instantiate a runner
        }),
        s.RUNNING: frozenset({
            s.DONE,
            s.ERROR,
            s.CANCEL_REQUESTED,
            s.CANCELED,
        }),
        s.CANCEL_REQUESTED: frozenset({
            s.CANCELED,
            s.DONE,
            s.ERROR,
        }),
        s.DONE: frozenset(),      # terminal
        s.ERROR: frozenset(),     # terminal
        s.CANCELED: frozenset(),  # terminal
    }


JOB_VALID_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = _transitions(JobStatus)
TASK_VALID_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = _transitions(TaskStatus)


def validate_job_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    if target not in JOB_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target.value, "JobStatus")


def validate_task_transition(current: TaskStatus, target: TaskStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    if target not in TASK_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target.value, "TaskStatus")


class ReplicaStatus(str, Enum):
    OK = "OK"
    NOT_READY = "NOT_READY"


class ReplicaPartitionStatus(str, Enum):
    """Health of one replica partition. EMPTY is terminal and never lost."""

    OK = "OK"
    EMPTY = "EMPTY"
    LOST = "LOST"
    BEING_RECOVERED = "BEING_RECOVERED"


class CompressionType(str, Enum):
    NONE = "NONE"
    DICTIONARY = "DICTIONARY"
    RLE = "RLE"
    NULL_SUPPRESS = "NULL_SUPPRESS"
    SNAPPY = "SNAPPY"
    GZIP_BEST_COMPRESSION = "GZIP_BEST_COMPRESSION"


class ColumnType(str, Enum):
    BOOLEAN = "BOOLEAN"
    INTEGER = "INTEGER"
    BIGINT = "BIGINT"
    DOUBLE = "DOUBLE"
    VARCHAR = "VARCHAR"


class JobType(str, Enum):
    RECOVER_FRACTURE_FROM_BUDDY = "RECOVER_FRACTURE_FROM_BUDDY"
    RECOVER_FRACTURE_FOREIGN = "RECOVER_FRACTURE_FOREIGN"
    MERGE_FRACTURE = "MERGE_FRACTURE"


class TaskType(str, Enum):
    MERGE_PARTITION_SAME_SCHEME = "MERGE_PARTITION_SAME_SCHEME"
    RECOVER_PARTITION_FROM_BUDDY = "RECOVER_PARTITION_FROM_BUDDY"
    REPARTITION = "REPARTITION"
    RECOVER_PARTITION_FROM_REPARTITIONED_FILES = "RECOVER_PARTITION_FROM_REPARTITIONED_FILES"
    DELETE_PARTITION_FILES = "DELETE_PARTITION_FILES"
    DELETE_TMP_FILES = "DELETE_TMP_FILES"


# =============================================================================
# VALUE RANGES
# =============================================================================


@dataclass(frozen=True)
class ValueRange:
    """Half-open key range ``[start, end)``. ``None`` is unbounded."""

    start: Any = None
    end: Any = None

    def contains(self, value: Any) -> bool:
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value >= self.end:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {"start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValueRange:
        return cls(start=data.get("start"), end=data.get("end"))

    def __str__(self) -> str:
        lo = "-inf" if self.start is None else repr(self.start)
        hi = "+inf" if self.end is None else repr(self.end)
        return f"[{lo}, {hi})"


def validate_ranges(ranges: list[ValueRange]) -> None:
    """Raise ``ValueError`` unless *ranges* are sorted and non-overlapping."""
    for i, rng in enumerate(ranges):
        if rng.start is not None and rng.end is not None and not rng.start < rng.end:
            raise ValueError(f"range {i} is empty or inverted: {rng}")
        if i == 0:
            continue
        prev = ranges[i - 1]
        if prev.end is None or rng.start is None or rng.start < prev.end:
            raise ValueError(f"ranges {i - 1} and {i} overlap: {prev} {rng}")


def find_partition(ranges: list[ValueRange], value: Any) -> int | None:
    """Index of the range containing *value*, by binary search on start keys.

    Returns ``None`` when the value falls in a gap or outside every range.
    """
    if not ranges:
        return None
    # the first range may be unbounded below; every other start is set
    starts = [r.start for r in ranges[1:]]
    idx = bisect.bisect_right(starts, value)
    return idx if ranges[idx].contains(value) else None


# =============================================================================
# ENTITIES
# =============================================================================


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    if isinstance(value, ValueRange):
        return value.to_dict()
    if isinstance(value, dict):
        return {str(k): _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def _datetime(value: Any) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _blob(value: Any) -> bytes:
    return base64.b64decode(value) if value else b""


def _ranges(value: Any) -> list[ValueRange]:
    return [ValueRange.from_dict(r) for r in value or []]


class Entity:
    """Mixin giving dataclasses a JSON-safe ``to_dict`` / ``from_dict``."""

    # field name -> decoder applied by from_dict
    _decoders: ClassVar[dict[str, Callable[[Any], Any]]] = {}

    def to_dict(self) -> dict[str, Any]:
        return {f.name: _encode(getattr(self, f.name)) for f in dataclasses.fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        names = {f.name for f in dataclasses.fields(cls)}
        kwargs = {}
        for key, value in data.items():
            if key not in names:
                continue
            decoder = cls._decoders.get(key)
            kwargs[key] = decoder(value) if decoder and value is not None else value
        return cls(**kwargs)

    def copy(self):
        return dataclasses.replace(self)


@dataclass
class Job(Entity):
    job_id: int
    job_type: JobType
    status: JobStatus = JobStatus.CREATED
    description: str = ""
    progress: float = 0.0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error_messages: str | None = None
    parameters: bytes = b""

    _decoders = {
        "job_type": JobType,
        "status": JobStatus,
        "started_at": _datetime,
        "finished_at": _datetime,
        "parameters": _blob,
    }


@dataclass
class Task(Entity):
    task_id: int
    job_id: int
    node_id: int
    task_type: TaskType
    status: TaskStatus = TaskStatus.CREATED
    progress: float = 0.0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    output_paths: list[str] = field(default_factory=list)
    error_messages: str | None = None
    parameters: bytes = b""

    _decoders = {
        "task_type": TaskType,
        "status": TaskStatus,
        "started_at": _datetime,
        "finished_at": _datetime,
        "parameters": _blob,
        "output_paths": list,
    }

    def copy(self) -> Task:
        return dataclasses.replace(self, output_paths=list(self.output_paths))


@dataclass
class Table(Entity):
    table_id: int
    name: str
    fracturing_column_id: int | None = None


@dataclass
class Column(Entity):
    column_id: int
    table_id: int
    name: str
    column_type: ColumnType = ColumnType.INTEGER
    order: int = 0

    _decoders = {"column_type": ColumnType}


@dataclass
class Fracture(Entity):
    fracture_id: int
    table_id: int
    range: ValueRange = field(default_factory=ValueRange)
    tuple_count: int = 0

    _decoders = {"range": ValueRange.from_dict}


@dataclass
class ReplicaGroup(Entity):
    """Schemes sharing one partitioning: identical ranges for every member."""

    group_id: int
    table_id: int
    partitioning_column_id: int | None = None
    ranges: list[ValueRange] = field(default_factory=lambda: [ValueRange()])
    linked_group_id: int | None = None

    _decoders = {"ranges": _ranges}

    def __post_init__(self) -> None:
        validate_ranges(self.ranges)

    def copy(self) -> ReplicaGroup:
        return dataclasses.replace(self, ranges=list(self.ranges))


@dataclass
class ReplicaScheme(Entity):
    scheme_id: int
    group_id: int
    sort_column_id: int | None = None
    column_compressions: dict[int, CompressionType] = field(default_factory=dict)

    _decoders = {
        "column_compressions": lambda d: {int(k): CompressionType(v) for k, v in d.items()},
    }

    def compression_of(self, column_id: int) -> CompressionType:
        return self.column_compressions.get(column_id, CompressionType.NONE)

    def copy(self) -> ReplicaScheme:
        return dataclasses.replace(self, column_compressions=dict(self.column_compressions))


@dataclass
class Replica(Entity):
    replica_id: int
    scheme_id: int
    fracture_id: int
    status: ReplicaStatus = ReplicaStatus.NOT_READY

    _decoders = {"status": ReplicaStatus}


@dataclass
class SubPartitionScheme(Entity):
    """Ranges of one (fracture, group) pair, shared by all its schemes."""

    sub_partition_scheme_id: int
    fracture_id: int
    group_id: int
    ranges: list[ValueRange] = field(default_factory=lambda: [ValueRange()])

    _decoders = {"ranges": _ranges}


@dataclass
class ReplicaPartition(Entity):
    partition_id: int
    replica_id: int
    sub_partition_scheme_id: int
    range_index: int
    node_id: int | None = None
    status: ReplicaPartitionStatus = ReplicaPartitionStatus.LOST

    _decoders = {"status": ReplicaPartitionStatus}


@dataclass
class Rack(Entity):
    rack_id: int
    name: str


@dataclass
class RackNode(Entity):
    node_id: int
    rack_id: int
    name: str
    address: str = ""


@dataclass
class RackAssignment(Entity):
    """Rack owned by a replica group for one fracture."""

    assignment_id: int
    fracture_id: int
    rack_id: int
    group_id: int


@dataclass
class ColumnFile(Entity):
    """One column of one partition on disk.

    ``local_path`` omits the file extension and is relative to the owning
    node's root (permanent files) or tmp dir (fragments).
    """

    column_file_id: int
    partition_id: int
    column_id: int
    local_path: str = ""
    column_type: ColumnType = ColumnType.INTEGER
    compression: CompressionType = CompressionType.NONE
    tuple_count: int = 0
    sorted: bool = False
    checksum: int = 0
    file_size: int = 0
    distinct_values: int = 0
    run_count: int = 0

    _decoders = {"column_type": ColumnType, "compression": CompressionType}


__all__ = [
    "utcnow",
    "JobStatus",
    "TaskStatus",
    "JOB_VALID_TRANSITIONS",
    "TASK_VALID_TRANSITIONS",
    "validate_job_transition",
    "validate_task_transition",
    "ReplicaStatus",
    "ReplicaPartitionStatus",
    "CompressionType",
    "ColumnType",
    "JobType",
    "TaskType",
    "ValueRange",
    "validate_ranges",
    "find_partition",
    "Entity",
    "Job",
    "Task",
    "Table",
    "Column",
    "Fracture",
    "ReplicaGroup",
    "ReplicaScheme",
    "Replica",
    "SubPartitionScheme",
    "ReplicaPartition",
    "Rack",
    "RackNode",
    "RackAssignment",
    "ColumnFile",
]
