"""Configuration for batch-spine."""

from .settings import BatchSettings, clear_settings_cache, get_settings

__all__ = ["BatchSettings", "get_settings", "clear_settings_cache"]
