"""Unit tests for cache settings and TTL policy."""

import pytest
from pydantic import ValidationError

from context_cache.cache.policy import TTLPolicy
from context_cache.config.settings import (
    HOUR,
    MINUTE,
    CacheSettings,
    ResultCategory,
    TTLSettings,
    general_cache_settings,
    memory_search_cache_settings,
)


def test_default_settings():
    """Test that default settings are correctly configured."""
    settings = CacheSettings()
    assert settings.memory_capacity == 100
    assert settings.persistent_capacity == 10_000
    assert settings.prune_fraction == 0.1
    assert settings.similarity_threshold == 0.88
    assert settings.lsh_planes == 12
    assert settings.db_path is None


def test_general_preset(tmp_path):
    settings = general_cache_settings(tmp_path / "general.db")
    assert settings.name == "general"
    assert settings.memory_capacity == 100
    assert settings.persistent_capacity == 10_000
    assert settings.similarity_threshold == 0.88
    assert settings.lsh_planes == 12
    assert settings.db_path == tmp_path / "general.db"


def test_memory_search_preset():
    settings = memory_search_cache_settings()
    assert settings.name == "memory_search"
    assert settings.memory_capacity == 50
    assert settings.persistent_capacity == 5_000
    assert settings.similarity_threshold == 0.85
    assert settings.lsh_planes == 10


@pytest.mark.parametrize(
    "field, value",
    [
        ("memory_capacity", -1),
        ("persistent_capacity", 0),
        ("prune_fraction", 0.0),
        ("prune_fraction", 1.5),
        ("similarity_threshold", 1.1),
        ("lsh_planes", 0),
        ("lsh_planes", 33),
    ],
)
def test_invalid_settings_rejected(field, value):
    with pytest.raises(ValidationError):
        CacheSettings(**{field: value})


def test_memory_tier_can_be_disabled():
    assert CacheSettings(memory_capacity=0).memory_capacity == 0


def test_non_positive_ttl_rejected():
    with pytest.raises(ValidationError):
        TTLSettings(default=0)
    with pytest.raises(ValidationError):
        TTLSettings(per_category={ResultCategory.TASK: -5})


@pytest.mark.parametrize(
    "category, expected",
    [
        (ResultCategory.FACTUAL, 24 * HOUR),
        (ResultCategory.NARRATIVE, 30 * MINUTE),
        (ResultCategory.EMOTIONAL, 30 * MINUTE),
        (ResultCategory.CONCEPTUAL, HOUR),
        (ResultCategory.RELATIONAL, HOUR),
        (ResultCategory.TASK, HOUR),
    ],
)
def test_general_ttl_table(category, expected):
    policy = TTLPolicy(general_cache_settings().ttl)
    assert policy.ttl_for(category) == expected


@pytest.mark.parametrize(
    "category, expected",
    [
        (ResultCategory.FACTUAL, 24 * HOUR),
        (ResultCategory.NARRATIVE, HOUR),
        (ResultCategory.EMOTIONAL, HOUR),
        (ResultCategory.TASK, 2 * HOUR),
    ],
)
def test_memory_search_ttl_table(category, expected):
    policy = TTLPolicy(memory_search_cache_settings().ttl)
    assert policy(category) == expected


def test_policy_accepts_category_value():
    policy = TTLPolicy(TTLSettings())
    assert policy.ttl_for("FACTUAL") == 24 * HOUR
