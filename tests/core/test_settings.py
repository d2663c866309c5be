"""Tests for lvstore.core.settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from lvstore.core.settings import LVStoreSettings, get_settings, reset_settings


class TestSettings:
    """Defaults, environment overrides and validation."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LVSTORE_STOP_MAX_WAIT_MS", raising=False)
        settings = LVStoreSettings(_env_file=None)
        assert settings.stop_max_wait_ms == 3000
        assert settings.task_join_interval_ms == 5000
        assert settings.task_join_interval_on_error_ms == 500

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("LVSTORE_STOP_MAX_WAIT_MS", "250")
        monkeypatch.setenv("LVSTORE_NODE_TASK_WORKERS", "6")
        settings = LVStoreSettings(_env_file=None)
        assert settings.stop_max_wait_ms == 250
        assert settings.node_task_workers == 6

    def test_rejects_zero_interval(self):
        with pytest.raises(ValidationError):
            LVStoreSettings(task_join_interval_ms=0)

    def test_cached_until_reset(self, monkeypatch):
        monkeypatch.setenv("LVSTORE_CANCEL_CHECK_ROWS", "7")
        first = get_settings()
        assert first.cancel_check_rows == 7
        assert get_settings() is first
        reset_settings()
        assert get_settings() is not first

    def test_every_field_is_read(self, monkeypatch):
        monkeypatch.setenv("LVSTORE_READ_BATCH_ROWS", "10")
        settings = LVStoreSettings(_env_file=None)
        assert "read_batch_rows" not in LVStoreSettings.model_fields
        assert not hasattr(settings, "read_batch_rows")
