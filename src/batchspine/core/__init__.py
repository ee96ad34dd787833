"""batch-spine core -- errors, logging, settings, hashing and schema.

Manifesto:
    The engine, the repositories, the CLI and the scheduler all need the same
    few primitives: one error hierarchy that survives being written to the
    run repository, one logging setup that binds job and step to every line,
    one settings object.  ``batchspine.core`` holds them and depends on no
    other batchspine package.

Architecture::

    errors.py          BatchError hierarchy (ResourceError, ItemError, ChunkError,
                       launch rejections) + describe_error()
    logging.py         structlog configuration, LogContext
    config/            BatchSettings (pydantic-settings, BATCH_* env vars)
    hashing.py         canonical_json() / compute_hash() for instance keys
    schema.py          batch_* table DDL + create_tables()
"""

from batchspine.core.config import BatchSettings, clear_settings_cache, get_settings
from batchspine.core.errors import (
    BatchError,
    ChunkError,
    ConfigError,
    InvalidJobParametersError,
    ItemError,
    JobExecutionAlreadyRunningError,
    JobInstanceAlreadyCompleteError,
    JobRestartError,
    NoSuchJobError,
    ResourceError,
)
from batchspine.core.logging import LogContext, configure_logging, get_logger

__all__ = [
    "BatchSettings",
    "get_settings",
    "clear_settings_cache",
    "BatchError",
    "ChunkError",
    "ConfigError",
    "InvalidJobParametersError",
    "ItemError",
    "JobExecutionAlreadyRunningError",
    "JobInstanceAlreadyCompleteError",
    "JobRestartError",
    "NoSuchJobError",
    "ResourceError",
    "LogContext",
    "configure_logging",
    "get_logger",
]
