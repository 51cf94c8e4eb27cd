"""In-process memoizing cache with per-category TTLs."""

import hashlib
import sys
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, TypeVar, Union

from knowledge_rag.utils.config import Settings, get_settings
from knowledge_rag.utils.logger import get_logger

logger = get_logger()

T = TypeVar("T")

SemanticKey = Union[str, Sequence[float]]


class CacheCategory(str, Enum):
    """Key prefixes; each category carries its own default TTL."""

    EMBEDDING = "embedding"
    SEARCH = "search"
    AI_RESPONSE = "ai_response"
    TOKENS = "tokens"
    CONTEXT = "context"


@dataclass
class CacheEntry:
    """A single cached value."""
    key: str
    value: Any
    inserted_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl_seconds


@dataclass
class CacheStats:
    """Snapshot of cache counters."""
    hits: int
    misses: int
    key_count: int
    approx_size: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "key_count": self.key_count,
            "approx_size": self.approx_size,
        }


def make_cache_key(category: Union[CacheCategory, str], semantic_key: SemanticKey) -> str:
    """
    Build a deterministic cache key.

    Args:
        category: Cache category used as the key prefix
        semantic_key: String, or sequence of numbers (joined with commas)

    Returns:
        Key of the form "<category>:<md5 hex>"
    """
    prefix = category.value if isinstance(category, CacheCategory) else str(category)
    if isinstance(semantic_key, str):
        raw = semantic_key
    else:
        raw = ",".join(repr(float(v)) for v in semantic_key)
    digest = hashlib.md5(raw.encode("utf-8")).hexdigest()
    return f"{prefix}:{digest}"


class CacheService:
    """
    Memoizing key/value cache shared by the embedding, search and generation
    layers.

    One instance is constructed at startup and passed to every collaborator.
    Entries expire lazily; when the cache is full the oldest insertion is
    evicted. There is no locking: values are pure functions of their keys, so
    concurrent writers to the same key store equal values.
    """

    HEALTH_CHECK_KEY = "health_check"

    def __init__(
        self,
        max_keys: Optional[int] = None,
        default_ttls: Optional[Dict[CacheCategory, float]] = None,
        clock: Callable[[], float] = time.monotonic,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the cache.

        Args:
            max_keys: Capacity bound (default from settings)
            default_ttls: TTL per category, overriding settings
            clock: Monotonic time source, injectable for tests
            settings: Settings instance (default: global settings)
        """
        settings = settings or get_settings()
        self.max_keys = max_keys or settings.cache_max_keys
        self.default_ttls: Dict[CacheCategory, float] = {
            CacheCategory.EMBEDDING: settings.cache_ttl_embedding_seconds,
            CacheCategory.SEARCH: settings.cache_ttl_search_seconds,
            CacheCategory.AI_RESPONSE: settings.cache_ttl_ai_response_seconds,
            CacheCategory.TOKENS: settings.cache_ttl_tokens_seconds,
            CacheCategory.CONTEXT: settings.cache_ttl_context_seconds,
        }
        if default_ttls:
            self.default_ttls.update(default_ttls)

        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    async def get_or_compute(
        self,
        category: CacheCategory,
        semantic_key: SemanticKey,
        ttl_seconds: Optional[float],
        compute_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Return the cached value for a key, computing and storing it on a miss.

        Exceptions raised by compute_fn propagate and nothing is stored.

        Args:
            category: Cache category
            semantic_key: Semantic input the value is derived from
            ttl_seconds: Entry lifetime, or None for the category default
            compute_fn: Zero-argument coroutine function producing the value

        Returns:
            Cached or freshly computed value
        """
        key = make_cache_key(category, semantic_key)

        found, value = self._lookup(key)
        if found:
            self._hits += 1
            logger.debug(f"Cache hit: {key}")
            return value

        self._misses += 1
        logger.debug(f"Cache miss: {key}")

        value = await compute_fn()

        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttls[category]
        self.set(key, value, ttl)
        return value

    def get(self, key: str) -> Any:
        """Return a live value by full key, or None."""
        found, value = self._lookup(key)
        return value if found else None

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store a value under a full key, refreshing any existing entry."""
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_keys:
            self._make_room()

        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            inserted_at=self._clock(),
            ttl_seconds=ttl_seconds,
        )

    def clear_by_category_prefix(self, prefix: str) -> int:
        """
        Remove every key starting with the given prefix.

        Args:
            prefix: Key prefix, e.g. "embedding:"

        Returns:
            Number of keys removed
        """
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]

        logger.info(f"Cleared {len(keys)} cache keys with prefix '{prefix}'")
        return len(keys)

    def clear_all(self) -> int:
        """Remove every entry and return how many were removed."""
        count = len(self._entries)
        self._entries.clear()
        logger.info("All cache cleared")
        return count

    def stats(self) -> CacheStats:
        """Return hit/miss counters and the current key count."""
        self.purge_expired()
        approx_size = sum(
            len(key) + sys.getsizeof(entry.value) for key, entry in self._entries.items()
        )
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            key_count=len(self._entries),
            approx_size=approx_size,
        )

    def is_healthy(self) -> bool:
        """Round-trip a short-lived value through the cache."""
        try:
            self.set(self.HEALTH_CHECK_KEY, "ok", 1)
            return self.get(self.HEALTH_CHECK_KEY) == "ok"
        except Exception as e:
            logger.error(f"Cache health check failed: {e}")
            return False

    def purge_expired(self) -> int:
        """Drop expired entries and return how many were dropped."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self._lookup(key)[0]

    def _lookup(self, key: str):
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return False, None
        return True, entry.value

    def _make_room(self) -> None:
        if self.purge_expired():
            return
        oldest_key, _ = self._entries.popitem(last=False)
        logger.debug(f"Cache full ({self.max_keys} keys), evicted {oldest_key}")
