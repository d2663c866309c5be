"""
Shared pytest fixtures and configuration for lvstore tests.

This module provides:
- Global state cleanup (cached settings, task registry, controller pool)
- Millisecond-scale settings so jobs and workers finish quickly
- A three-node single-host cluster, with or without running workers
- The sample catalog from ``tests._support.cluster``

Usage:
    def test_something(running_cluster, catalog):
        ...
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Generator

import pytest

from lvstore.core.repository import InMemoryMetadataRepository
from lvstore.core.settings import LVStoreSettings, reset_settings
from lvstore.execution.controller import shutdown_controller_pool
from lvstore.tasks.registry import reset_default_task_registry
from tests._support.cluster import Catalog, Cluster, build_catalog, build_cluster


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "jobs" in test_path.parts or "cli" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Global state cleanup
# =============================================================================


@pytest.fixture(autouse=True)
def clean_globals() -> Generator[None, None, None]:
    """Reset cached settings, the task registry and the controller pool."""
    reset_settings()
    reset_default_task_registry()
    yield
    shutdown_controller_pool(wait=False)
    reset_default_task_registry()
    reset_settings()


# =============================================================================
# Cluster fixtures
# =============================================================================


@pytest.fixture
def settings(tmp_path: Path) -> LVStoreSettings:
    """Millisecond-scale intervals and a tiny cancellation granularity."""
    return LVStoreSettings(
        stop_max_wait_ms=2000,
        task_join_interval_ms=10,
        task_join_interval_on_error_ms=5,
        node_polling_interval_ms=5,
        cancel_check_rows=10,
        value_index_stride=4,
        root_dir=tmp_path / "data",
        tmp_dir=tmp_path / "tmp",
    )


@pytest.fixture
def repo() -> InMemoryMetadataRepository:
    return InMemoryMetadataRepository()


@pytest.fixture
def cluster(repo, settings) -> Generator[Cluster, None, None]:
    """Three nodes in one rack, each with its own data and tmp directory."""
    c = build_cluster(repo, settings)
    yield c
    c.stop_workers()


@pytest.fixture
def running_cluster(cluster) -> Cluster:
    """The cluster with a task worker polling on every node."""
    cluster.start_workers()
    return cluster


@pytest.fixture
def catalog(repo) -> Catalog:
    return build_catalog(repo)


@pytest.fixture
def pool() -> Generator[ThreadPoolExecutor, None, None]:
    executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="test-job")
    yield executor
    executor.shutdown(wait=False)
