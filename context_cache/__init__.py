"""
context-cache: tiered semantic cache for retrieval-augmented generation.

Memoizes assembled retrieval context keyed by user queries across an
in-process LRU, an on-device SQLite store and an LSH similarity index.
"""

__version__ = "0.1.0"
