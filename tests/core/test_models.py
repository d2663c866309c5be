"""Tests for lvstore.core.models: state machine, value ranges, entity round trips."""

from __future__ import annotations

import pytest

from lvstore.core.errors import InvalidTransitionError
from lvstore.core.models import (
    JOB_VALID_TRANSITIONS,
    TASK_VALID_TRANSITIONS,
    ColumnFile,
    CompressionType,
    Job,
    JobStatus,
    JobType,
    ReplicaGroup,
    ReplicaScheme,
    Task,
    TaskStatus,
    TaskType,
    ValueRange,
    find_partition,
    validate_job_transition,
    validate_ranges,
    validate_task_transition,
)


class TestStatusTransitions:
    """Job and task lifecycle rules."""

    def test_normal_task_path(self):
        """CREATED → START_REQUESTED → RUNNING → DONE is allowed."""
        validate_task_transition(TaskStatus.CREATED, TaskStatus.START_REQUESTED)
        validate_task_transition(TaskStatus.START_REQUESTED, TaskStatus.RUNNING)
        validate_task_transition(TaskStatus.RUNNING, TaskStatus.DONE)

    def test_cancel_requested_may_still_finish(self):
        """A task asked to cancel can still complete or fail."""
        for target in (TaskStatus.CANCELED, TaskStatus.DONE, TaskStatus.ERROR):
            validate_task_transition(TaskStatus.CANCEL_REQUESTED, target)

    @pytest.mark.parametrize("terminal", [TaskStatus.DONE, TaskStatus.ERROR, TaskStatus.CANCELED])
    def test_terminal_statuses_are_final(self, terminal):
        """No transition leaves DONE, ERROR or CANCELED."""
        for target in TaskStatus:
            with pytest.raises(InvalidTransitionError):
                validate_task_transition(terminal, target)

    def test_start_requested_cannot_jump_to_done(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_task_transition(TaskStatus.START_REQUESTED, TaskStatus.DONE)
        assert "START_REQUESTED → DONE" in str(exc_info.value)

    def test_running_cannot_go_back(self):
        with pytest.raises(InvalidTransitionError):
            validate_job_transition(JobStatus.RUNNING, JobStatus.CREATED)

    def test_job_and_task_tables_match(self):
        """Jobs and tasks share the same lifecycle shape."""
        for status, targets in JOB_VALID_TRANSITIONS.items():
            task_targets = TASK_VALID_TRANSITIONS[TaskStatus(status.value)]
            assert {t.value for t in targets} == {t.value for t in task_targets}

    def test_is_finished(self):
        assert JobStatus.DONE.is_finished
        assert TaskStatus.CANCELED.is_finished
        assert not TaskStatus.CANCEL_REQUESTED.is_finished
        assert not JobStatus.RUNNING.is_finished


class TestValueRange:
    """Half-open ranges and range lookup."""

    def test_contains_half_open(self):
        rng = ValueRange(10, 20)
        assert rng.contains(10)
        assert rng.contains(19)
        assert not rng.contains(20)
        assert not rng.contains(9)

    def test_unbounded_sides(self):
        assert ValueRange(None, 5).contains(-1000)
        assert ValueRange(5, None).contains(10**9)
        assert ValueRange().contains("anything")

    def test_str(self):
        assert str(ValueRange(None, 5)) == "[-inf, 5)"
        assert str(ValueRange(1, None)) == "[1, +inf)"

    def test_validate_rejects_overlap(self):
        with pytest.raises(ValueError, match="overlap"):
            validate_ranges([ValueRange(None, 10), ValueRange(5, None)])

    def test_validate_rejects_inverted(self):
        with pytest.raises(ValueError, match="inverted"):
            validate_ranges([ValueRange(10, 5)])

    def test_validate_accepts_gaps(self):
        validate_ranges([ValueRange(None, 10), ValueRange(20, 30)])

    def test_find_partition(self):
        ranges = [ValueRange(None, 10), ValueRange(10, 20), ValueRange(20, None)]
        assert find_partition(ranges, -5) == 0
        assert find_partition(ranges, 10) == 1
        assert find_partition(ranges, 19) == 1
        assert find_partition(ranges, 500) == 2

    def test_find_partition_gap(self):
        ranges = [ValueRange(None, 10), ValueRange(20, 30)]
        assert find_partition(ranges, 15) is None
        assert find_partition(ranges, 30) is None

    def test_find_partition_single_unbounded(self):
        assert find_partition([ValueRange()], 42) == 0
        assert find_partition([], 42) is None


class TestEntities:
    """Entity to_dict / from_dict and copies."""

    def test_job_round_trip(self):
        job = Job(job_id=3, job_type=JobType.MERGE_FRACTURE, parameters=b"\x00\x01\xff")
        restored = Job.from_dict(job.to_dict())
        assert restored == job
        assert restored.parameters == b"\x00\x01\xff"

    def test_task_copy_is_detached(self):
        task = Task(task_id=1, job_id=1, node_id=1, task_type=TaskType.REPARTITION)
        clone = task.copy()
        clone.output_paths.append("x")
        assert task.output_paths == []

    def test_group_ranges_round_trip(self):
        group = ReplicaGroup(group_id=1, table_id=1, partitioning_column_id=2,
                             ranges=[ValueRange(None, "m"), ValueRange("m", None)])
        assert ReplicaGroup.from_dict(group.to_dict()).ranges == group.ranges

    def test_group_rejects_bad_ranges(self):
        with pytest.raises(ValueError):
            ReplicaGroup(group_id=1, table_id=1, ranges=[ValueRange(5, 1)])

    def test_scheme_compressions(self):
        scheme = ReplicaScheme(scheme_id=1, group_id=1, column_compressions={4: CompressionType.RLE})
        restored = ReplicaScheme.from_dict(scheme.to_dict())
        assert restored.compression_of(4) == CompressionType.RLE
        assert restored.compression_of(5) == CompressionType.NONE

    def test_from_dict_ignores_unknown_keys(self):
        cf = ColumnFile.from_dict({"column_file_id": 1, "partition_id": 2, "column_id": 3, "bogus": 1})
        assert cf.column_file_id == 1
