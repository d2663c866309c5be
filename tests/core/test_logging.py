"""Tests for lvstore.core.logging context binding."""

from __future__ import annotations

import pytest
import structlog

from lvstore.core.logging import LogContext, bind_context, get_logger, unbind_context


@pytest.fixture(autouse=True)
def clean_contextvars():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


def test_log_context_binds_and_unbinds():
    with LogContext(job_id=3, task_id=None):
        assert structlog.contextvars.get_contextvars() == {"job_id": 3}
    assert structlog.contextvars.get_contextvars() == {}


def test_nested_context_restores_outer_values():
    with LogContext(node_id=1):
        with LogContext(task_id=9, node_id=2):
            assert structlog.contextvars.get_contextvars() == {"node_id": 2, "task_id": 9}
        assert structlog.contextvars.get_contextvars() == {"node_id": 1}


def test_context_restored_when_body_raises():
    with pytest.raises(RuntimeError):
        with LogContext(job_id=5):
            raise RuntimeError("boom")
    assert "job_id" not in structlog.contextvars.get_contextvars()


def test_bind_and_unbind():
    bind_context(node_id=4)
    assert structlog.contextvars.get_contextvars()["node_id"] == 4
    unbind_context("node_id")
    assert structlog.contextvars.get_contextvars() == {}


def test_get_logger_is_structlog_logger():
    logger = get_logger("lvstore.test")
    assert hasattr(logger, "info")
