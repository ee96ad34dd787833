"""
Centralized settings for batch-spine.

Manifesto:
    One validated, cached settings object for every knob the engine reads
    from the environment: where the run repository lives, the default chunk
    and fault-tolerance limits, the launcher pool size, the scheduler tick
    and the logging setup.

All fields can be set via ``BATCH_*`` environment variables (e.g.
``BATCH_DATABASE_PATH=/var/lib/batch/runs.db``) or through a ``.env`` file.

Tags:
    configuration, settings, pydantic, caching, validation
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BatchSettings(BaseSettings):
    """batch-spine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Run repository ───────────────────────────────────────────
    database_path: str = Field(
        default=str(Path.home() / ".batch-spine" / "batch.db"),
        description="SQLite file backing the run repository (':memory:' for tests)",
    )

    # ── Job definitions (CLI) ────────────────────────────────────
    jobs: str = Field(
        default="batchspine.examples.orders:build_registry",
        description="'module:attr' naming a JobRegistry or a factory(repository) returning one",
    )

    # ── Step defaults ────────────────────────────────────────────
    default_chunk_size: int = Field(default=10, ge=1)
    default_skip_limit: int = Field(default=0, ge=0)
    default_retry_limit: int = Field(default=0, ge=0)

    # ── Launcher ─────────────────────────────────────────────────
    max_workers: int = Field(default=4, ge=1, description="Concurrent job executions")

    # ── Scheduler ────────────────────────────────────────────────
    scheduler_interval_seconds: float = Field(default=1.0, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        value = value.upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return value

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        value = value.lower()
        if value not in {"json", "console"}:
            raise ValueError(f"log_format must be 'json' or 'console', got {value!r}")
        return value

    @property
    def is_memory_database(self) -> bool:
        return self.database_path == ":memory:"


_settings_cache: dict[str, BatchSettings] = {}


def get_settings(*, _force_reload: bool = False) -> BatchSettings:
    """Load, validate, and cache a :class:`BatchSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = BatchSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
