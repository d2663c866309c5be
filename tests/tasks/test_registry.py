"""Tests for lvstore.tasks.registry."""

from __future__ import annotations

from lvstore.core.models import TaskType
from lvstore.tasks.cleanup import DeleteTmpFilesTaskRunner
from lvstore.tasks.params import DeleteTmpFilesTaskParameters, RepartitionTaskParameters
from lvstore.tasks.registry import (
    TaskRunnerRegistry,
    build_task_registry,
    get_default_task_registry,
    reset_default_task_registry,
)


class TestTaskRunnerRegistry:
    """Lookup by task type."""

    def test_every_task_type_is_registered(self):
        registry = build_task_registry()
        assert len(registry) == len(TaskType)
        assert registry.list_task_types() == sorted(TaskType, key=lambda t: t.value)

    def test_instantiate_builds_fresh_runners(self):
        registry = build_task_registry()
        a = registry.instantiate(TaskType.DELETE_TMP_FILES)
        b = registry.instantiate("DELETE_TMP_FILES")
        assert isinstance(a, DeleteTmpFilesTaskRunner)
        assert a is not b

    def test_unknown_tag_yields_none(self):
        registry = build_task_registry()
        assert registry.instantiate("COMPACT_EVERYTHING") is None

    def test_unregistered_type_yields_none(self):
        registry = TaskRunnerRegistry()
        assert registry.instantiate(TaskType.REPARTITION) is None
        assert registry.parameters_class(TaskType.REPARTITION) is None

    def test_parameters_class(self):
        registry = build_task_registry()
        assert registry.parameters_class(TaskType.REPARTITION) is RepartitionTaskParameters
        assert registry.get(TaskType.DELETE_TMP_FILES).parameters_class is DeleteTmpFilesTaskParameters

    def test_register_runner_as_decorator(self):
        registry = TaskRunnerRegistry()

        @registry.register_runner
        class Custom(DeleteTmpFilesTaskRunner):
            pass

        assert isinstance(registry.instantiate(TaskType.DELETE_TMP_FILES), Custom)
        assert registry.unregister(TaskType.DELETE_TMP_FILES) is True
        assert registry.unregister(TaskType.DELETE_TMP_FILES) is False

    def test_default_registry_is_shared_until_reset(self):
        first = get_default_task_registry()
        assert get_default_task_registry() is first
        reset_default_task_registry()
        assert get_default_task_registry() is not first
