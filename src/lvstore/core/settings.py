"""Settings for lvstore controllers, node workers and tasks.

All timing constants of the orchestration engine live here so that tests
and deployments can shorten or lengthen them without touching code.

Examples:
    >>> from lvstore.core.settings import LVStoreSettings
    >>> LVStoreSettings(task_join_interval_ms=20).task_join_interval_ms
    20

Environment variables use the ``LVSTORE_`` prefix, e.g.
``LVSTORE_STOP_MAX_WAIT_MS=10000``.

Tags:
    settings, configuration, pydantic, environment, lvstore
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LVStoreSettings(BaseSettings):
    """Process-wide lvstore configuration.

    Fields
    ──────
    stop_max_wait_ms               : Upper bound ``JobController.stop`` waits
    task_join_interval_ms          : Task poll interval while all is well
    task_join_interval_on_error_ms : Task poll interval once a task failed
    controller_pool_size           : Worker threads for asynchronous jobs
    node_polling_interval_ms       : Node worker poll interval
    node_task_workers              : Tasks a node runs concurrently
    cancel_check_rows              : Rows processed between cancellation checks
    value_index_stride             : Sort-column values sampled every N rows
    """

    model_config = SettingsConfigDict(
        env_prefix="LVSTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Job controller ───────────────────────────────────────────
    stop_max_wait_ms: int = Field(default=3000, ge=0)
    task_join_interval_ms: int = Field(default=5000, gt=0)
    task_join_interval_on_error_ms: int = Field(default=500, gt=0)
    controller_pool_size: int = Field(default=4, ge=1)

    # ── Node worker ──────────────────────────────────────────────
    node_polling_interval_ms: int = Field(default=1000, gt=0)
    node_task_workers: int = Field(default=2, ge=1)

    # ── Task execution ───────────────────────────────────────────
    cancel_check_rows: int = Field(default=100_000, gt=0)
    value_index_stride: int = Field(default=128, gt=0)

    # ── Storage ──────────────────────────────────────────────────
    root_dir: Path = Field(
        default_factory=lambda: Path.home() / ".lvstore" / "data",
        description="Permanent column file directory of this node",
    )
    tmp_dir: Path = Field(
        default_factory=lambda: Path.home() / ".lvstore" / "tmp",
        description="Node-local scratch directory for fragments and merges",
    )
    database_url: str = "sqlite:///lvstore.db"

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None


@lru_cache(maxsize=1)
def get_settings() -> LVStoreSettings:
    """Return the process-wide settings, read once from the environment."""
    return LVStoreSettings()


def reset_settings() -> None:
    """Forget the cached settings (tests)."""
    get_settings.cache_clear()


__all__ = ["LVStoreSettings", "get_settings", "reset_settings"]
