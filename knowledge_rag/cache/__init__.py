"""Memoization layer for embeddings, searches, contexts and answers.

This module provides:
- A category-scoped TTL cache
- Deterministic cache keys derived from semantic inputs
"""

from knowledge_rag.cache.memory_cache import (
    CacheCategory,
    CacheEntry,
    CacheService,
    CacheStats,
    make_cache_key,
)

__all__ = [
    "CacheCategory",
    "CacheEntry",
    "CacheService",
    "CacheStats",
    "make_cache_key",
]
