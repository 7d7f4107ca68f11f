"""Cache configuration."""

from .settings import (
    CacheSettings,
    ResultCategory,
    TTLSettings,
    general_cache_settings,
    memory_search_cache_settings,
)

__all__ = [
    "CacheSettings",
    "ResultCategory",
    "TTLSettings",
    "general_cache_settings",
    "memory_search_cache_settings",
]
