"""Unit tests for payload predicates, entry expiry and error formatting."""

from context_cache.cache.errors import CorruptEntry, InvalidationFailure
from context_cache.cache.predicates import mentions_entity, uses_chunk
from context_cache.cache.schemas import CacheEntry, ContextPayload, LookupResult
from context_cache.config.settings import ResultCategory


def test_mentions_entity_model_and_dict():
    predicate = mentions_entity("REX")

    assert predicate(ContextPayload(entities=[{"entity": "Rex", "type": "pet"}]))
    assert predicate({"entities": [{"entity": "rex"}]})
    assert not predicate({"entities": [{"entity": "Max"}]})
    assert not predicate({"entities": "Rex"})
    assert not predicate("Rex")


def test_uses_chunk():
    predicate = uses_chunk("c2")

    assert predicate(ContextPayload(chunks=[{"id": "c1"}, {"id": "c2"}]))
    assert predicate({"chunks": [{"id": "c2", "text": "..."}]})
    assert not predicate({"chunks": [{"id": "C2"}]})
    assert not predicate(None)


def test_entry_expiry_is_inclusive():
    entry = CacheEntry(
        id="e",
        original_query="q",
        normalized_query="q",
        scope_id="u1",
        result_category=ResultCategory.TASK,
        created_at=100.0,
        ttl=50.0,
    )

    assert entry.expires_at == 150.0
    assert not entry.is_expired(150.0)
    assert entry.is_expired(150.001)


def test_lookup_miss():
    result = LookupResult.miss()
    assert result.hit is False
    assert result.payload is None


def test_error_formatting():
    error = CorruptEntry("abc", ValueError("bad json"))
    assert "abc" in str(error)
    assert "ValueError: bad json" in str(error)
    assert error.to_dict()["error_type"] == "CorruptEntry"

    failure = InvalidationFailure("entity Rex", deleted=["a"], failed=["b", "c"])
    assert failure.details == {"target": "entity Rex", "deleted": 1, "failed": ["b", "c"]}
    assert "failed for 2 entries" in str(failure)
