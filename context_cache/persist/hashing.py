"""
Stable hashing utilities for content-addressable cache keys.

Provides query normalization and deterministic hashing of dicts, lists,
strings, and bytes. Uses JSON canonicalization for dicts/lists and
UTF-8 NFC normalization for strings.
"""

import hashlib
import json
import re
import unicodedata

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_query(text: str) -> str:
    """
    Canonicalize a query so that trivial variations share one cache key.

    Lowercases, strips punctuation, collapses whitespace and trims.

    Examples:
        >>> normalize_query("What is my dog's name?")
        'what is my dogs name'
        >>> normalize_query("  what IS my   dog's name ")
        'what is my dogs name'
    """
    text = unicodedata.normalize("NFC", text).lower()
    text = _PUNCTUATION.sub("", text)
    text = _WHITESPACE.sub(" ", text)
    return text.strip()


def stable_hash(obj: dict | list | str | bytes) -> str:
    """
    Compute stable hash of an object.

    - Dicts: sorted by keys, then JSON-serialized
    - Lists: JSON-serialized (order matters)
    - Strings: UTF-8 normalized
    - Bytes: used directly

    Returns:
        64-character hex string (blake2b)

    Examples:
        >>> stable_hash({"b": 2, "a": 1}) == stable_hash({"a": 1, "b": 2})
        True
    """
    if isinstance(obj, (dict, list)):
        canonical = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        data = canonical.encode("utf-8")
    elif isinstance(obj, str):
        data = unicodedata.normalize("NFC", obj).encode("utf-8")
    elif isinstance(obj, bytes):
        data = obj
    else:
        raise TypeError(f"Cannot hash type {type(obj)}: {obj}")

    h = hashlib.blake2b(data, digest_size=32)
    return h.hexdigest()


def entry_id(normalized_query: str, scope_id: str) -> str:
    """
    Cache entry id for a normalized query within a scope.

    The scope is part of the key, so the same question asked by two users
    never shares a tier-1 or tier-2 slot.
    """
    return stable_hash({"query": normalized_query, "scope": scope_id})
