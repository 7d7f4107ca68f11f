"""Cache settings and configuration schema."""

from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator


class ResultCategory(str, Enum):
    """Intent category of a cached result. Drives the entry's TTL."""
    FACTUAL = "FACTUAL"
    NARRATIVE = "NARRATIVE"
    CONCEPTUAL = "CONCEPTUAL"
    RELATIONAL = "RELATIONAL"
    EMOTIONAL = "EMOTIONAL"
    TASK = "TASK"


HOUR = 3600.0
MINUTE = 60.0


class TTLSettings(BaseModel):
    """Time-to-live table in seconds. Categories not listed get `default`."""
    default: float = Field(HOUR, gt=0)
    per_category: Dict[ResultCategory, float] = Field(
        default_factory=lambda: {
            ResultCategory.FACTUAL: 24 * HOUR,
            ResultCategory.NARRATIVE: 30 * MINUTE,
            ResultCategory.EMOTIONAL: 30 * MINUTE,
        }
    )

    @field_validator("per_category")
    @classmethod
    def _positive(cls, value: Dict[ResultCategory, float]) -> Dict[ResultCategory, float]:
        for category, seconds in value.items():
            if seconds <= 0:
                raise ValueError(f"TTL for {category.value} must be positive, got {seconds}")
        return value


class CacheSettings(BaseModel):
    """
    Configuration for one CacheEngine instance.

    memory_capacity=0 disables the in-process tier; db_path=None disables the
    persistent tier. At least one of them must be usable at init().
    """
    name: str = "context-cache"
    memory_capacity: int = Field(100, ge=0)
    persistent_capacity: int = Field(10_000, gt=0)
    prune_fraction: float = Field(0.1, gt=0.0, le=1.0)
    similarity_threshold: float = Field(0.88, ge=0.0, le=1.0)
    lsh_planes: int = Field(12, ge=1, le=32)
    lsh_seed: Optional[int] = None
    db_path: Optional[Path] = None
    ttl: TTLSettings = TTLSettings()


def general_cache_settings(db_path: Optional[Path] = None) -> CacheSettings:
    """Settings for the general retrieval-context cache."""
    return CacheSettings(
        name="general",
        memory_capacity=100,
        persistent_capacity=10_000,
        similarity_threshold=0.88,
        lsh_planes=12,
        db_path=db_path,
        ttl=TTLSettings(
            default=HOUR,
            per_category={
                ResultCategory.FACTUAL: 24 * HOUR,
                ResultCategory.NARRATIVE: 30 * MINUTE,
                ResultCategory.EMOTIONAL: 30 * MINUTE,
            },
        ),
    )


def memory_search_cache_settings(db_path: Optional[Path] = None) -> CacheSettings:
    """
    Settings for the memory-search cache.

    Smaller tiers and a lower threshold: memories are phrased more loosely
    than general questions.
    """
    return CacheSettings(
        name="memory_search",
        memory_capacity=50,
        persistent_capacity=5_000,
        similarity_threshold=0.85,
        lsh_planes=10,
        db_path=db_path,
        ttl=TTLSettings(
            default=2 * HOUR,
            per_category={
                ResultCategory.FACTUAL: 24 * HOUR,
                ResultCategory.NARRATIVE: HOUR,
                ResultCategory.EMOTIONAL: HOUR,
            },
        ),
    )
