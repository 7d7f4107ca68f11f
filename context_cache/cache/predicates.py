"""
Payload predicates for source-driven invalidation.

Work on ContextPayload instances and on plain dicts with the same keys
("entities" items carry "entity", "chunks" items carry "id").
"""

from typing import Any, Callable

from .schemas import ContextPayload


def _items(payload: Any, field: str) -> list:
    if isinstance(payload, ContextPayload):
        return getattr(payload, field)
    if isinstance(payload, dict):
        value = payload.get(field)
        return value if isinstance(value, list) else []
    return []


def mentions_entity(entity_name: str) -> Callable[[Any], bool]:
    """Predicate: payload lists an entity with this name (case-insensitive)."""
    target = entity_name.lower()

    def predicate(payload: Any) -> bool:
        return any(
            isinstance(item, dict) and str(item.get("entity", "")).lower() == target
            for item in _items(payload, "entities")
        )

    return predicate


def uses_chunk(chunk_id: str) -> Callable[[Any], bool]:
    """Predicate: payload was assembled from this chunk."""

    def predicate(payload: Any) -> bool:
        return any(
            isinstance(item, dict) and item.get("id") == chunk_id
            for item in _items(payload, "chunks")
        )

    return predicate
