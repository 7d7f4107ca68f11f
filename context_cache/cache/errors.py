"""
Cache error hierarchy.

Tier-level failures are isolated by the engine: they are logged and the
affected tier is skipped. Only initialization problems and failed bulk
invalidations reach the caller.

    CacheError
    ├── CacheInitError        no usable tier / engine used before init()
    ├── StorageError          SQLite failure in the persistent tier
    │   ├── StorageUnavailable    persistent tier cannot be opened
    │   └── PayloadNotSerialisable  payload cannot be encoded for disk
    ├── CorruptEntry          stored record fails validation
    ├── DimensionMismatch     embedding length differs from the hyperplanes
    ├── HyperplanesFixed      attempt to replace established hyperplanes
    └── InvalidationFailure   bulk delete partially failed
"""

from typing import Any, Optional


class CacheError(Exception):
    """
    Base exception for all cache errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        original_error: The underlying exception, if any
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        base = self.message
        if self.details:
            base += f" | Details: {self.details}"
        if self.original_error:
            base += f" | Caused by: {type(self.original_error).__name__}: {self.original_error}"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "details": self.details,
            "original_error": str(self.original_error) if self.original_error else None,
        }


class CacheInitError(CacheError):
    """No tier could be brought up, or the engine was used before init()."""


class StorageError(CacheError):
    """The persistent tier failed an operation."""


class StorageUnavailable(StorageError):
    """The persistent tier could not be opened or initialized."""


class PayloadNotSerialisable(StorageError):
    """A payload cannot be encoded for the persistent tier."""

    def __init__(self, entry_id: str, original_error: Optional[BaseException] = None):
        super().__init__(
            f"Payload of cache entry {entry_id} cannot be serialised",
            details={"entry_id": entry_id},
            original_error=original_error,
        )
        self.entry_id = entry_id


class CorruptEntry(CacheError):
    """A stored record could not be decoded into a CacheEntry."""

    def __init__(self, entry_id: str, original_error: Optional[BaseException] = None):
        super().__init__(
            f"Corrupt cache entry {entry_id}",
            details={"entry_id": entry_id},
            original_error=original_error,
        )
        self.entry_id = entry_id


class DimensionMismatch(CacheError):
    """An embedding's length disagrees with the hyperplane dimensionality."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Embedding has {actual} dimensions, index expects {expected}",
            details={"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class HyperplanesFixed(CacheError):
    """The LSH hyperplanes are already established and cannot be replaced."""


class InvalidationFailure(CacheError):
    """
    A bulk invalidation deleted some entries but failed on others.

    Deletions are not transactional across the batch: `deleted` entries stay
    deleted.
    """

    def __init__(
        self,
        target: str,
        deleted: list[str],
        failed: list[str],
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(
            f"Invalidation of {target} failed for {len(failed)} entries",
            details={"target": target, "deleted": len(deleted), "failed": failed},
            original_error=original_error,
        )
        self.target = target
        self.deleted = deleted
        self.failed = failed
