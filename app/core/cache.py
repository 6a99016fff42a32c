"""In-process caching: namespaced LRU/TTL cache, chat response cache and search cache keys."""

import hashlib
import json
import re
import threading
import time
import unicodedata
from collections import OrderedDict
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable

from app.core.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Namespaces and TTL presets
# =============================================================================


class CacheNamespace:
    USER_SESSIONS = "user_sessions"
    CHAT_HISTORY = "chat_history"
    DOCUMENTS = "documents"
    SEARCH_RESULTS = "search_results"
    EMBEDDINGS = "embeddings"
    SYSTEM_HEALTH = "system_health"
    ANALYTICS = "analytics"


class CacheTTL:
    """TTL presets in seconds."""

    VERY_SHORT = 30
    SHORT = 5 * 60
    MEDIUM = 30 * 60
    LONG = 2 * 60 * 60
    VERY_LONG = 24 * 60 * 60


@dataclass
class _Entry:
    value: Any
    expires_at: float
    created_at: float
    hits: int = 0
    size: int = 0


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    total_entries: int = 0
    memory_usage: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return round(self.hits / total * 100, 2) if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "evictions": self.evictions,
            "total_entries": self.total_entries,
            "memory_usage": self.memory_usage,
        }


def _hash_params(params: Any) -> str:
    encoded = json.dumps(params, sort_keys=True, default=str)
    return hashlib.sha256(encoded.encode()).hexdigest()[:12]


def _estimate_size(value: Any) -> int:
    try:
        return len(json.dumps(value, default=str)) * 2
    except (TypeError, ValueError):
        return 0


# =============================================================================
# AdvancedCache
# =============================================================================


class AdvancedCache:
    """
    Namespaced in-memory cache with TTL expiry and LRU eviction.

    Keys are ``namespace:key`` with an optional params hash appended, so the
    same logical key can be cached per parameter set. Per-process only.
    """

    def __init__(self, max_entries: int = 1000, default_ttl: int = CacheTTL.SHORT, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.RLock()
        self._stats = CacheStats()

    @staticmethod
    def build_key(namespace: str, key: str, params: Any = None) -> str:
        base = f"{namespace}:{key}"
        if params is None:
            return base
        return f"{base}:{_hash_params(params)}"

    def get(self, namespace: str, key: str, params: Any = None) -> Any | None:
        full_key = self.build_key(namespace, key, params)
        with self._lock:
            entry = self._entries.get(full_key)
            if entry is None:
                self._stats.misses += 1
                return None
            if entry.expires_at <= self._clock():
                del self._entries[full_key]
                self._stats.misses += 1
                return None
            entry.hits += 1
            self._entries.move_to_end(full_key)
            self._stats.hits += 1
            return entry.value

    def set(self, namespace: str, key: str, value: Any, ttl: int | None = None, params: Any = None) -> None:
        full_key = self.build_key(namespace, key, params)
        now = self._clock()
        with self._lock:
            if full_key in self._entries:
                del self._entries[full_key]
            while len(self._entries) >= self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                self._stats.evictions += 1
                logger.debug(f"Evicted cache entry {evicted_key}")
            self._entries[full_key] = _Entry(
                value=value,
                expires_at=now + (ttl if ttl is not None else self.default_ttl),
                created_at=now,
                size=_estimate_size(value),
            )

    def has(self, namespace: str, key: str, params: Any = None) -> bool:
        full_key = self.build_key(namespace, key, params)
        with self._lock:
            entry = self._entries.get(full_key)
            return entry is not None and entry.expires_at > self._clock()

    def delete(self, namespace: str, key: str, params: Any = None) -> bool:
        full_key = self.build_key(namespace, key, params)
        with self._lock:
            return self._entries.pop(full_key, None) is not None

    def clear_namespace(self, namespace: str) -> int:
        prefix = f"{namespace}:"
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
        if doomed:
            logger.info(f"Cleared {len(doomed)} entries from cache namespace {namespace}")
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._stats = CacheStats()

    def cleanup(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            self._stats.total_entries = len(self._entries)
            self._stats.memory_usage = sum(e.size for e in self._entries.values())
            return CacheStats(**vars(self._stats))

    def set_batch(self, namespace: str, items: dict[str, Any], ttl: int | None = None) -> None:
        for key, value in items.items():
            self.set(namespace, key, value, ttl=ttl)

    def get_batch(self, namespace: str, keys: list[str]) -> dict[str, Any]:
        found = {}
        for key in keys:
            value = self.get(namespace, key)
            if value is not None:
                found[key] = value
        return found

    def memoize(self, namespace: str, ttl: int | None = None, key_fn: Callable[..., str] | None = None):
        """Decorator caching a function's return value per argument set."""

        def decorator(fn):
            @wraps(fn)
            def wrapper(*args, **kwargs):
                key = key_fn(*args, **kwargs) if key_fn else fn.__name__
                params = None if key_fn else {"args": args, "kwargs": kwargs}
                cached = self.get(namespace, key, params)
                if cached is not None:
                    return cached
                result = fn(*args, **kwargs)
                if result is not None:
                    self.set(namespace, key, result, ttl=ttl, params=params)
                return result

            return wrapper

        return decorator


cache = AdvancedCache()


# =============================================================================
# Chat response cache
# =============================================================================

RESPONSE_TTL = 60 * 60

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def hash_question(question: str) -> str:
    """Stable hash of a question, ignoring case, punctuation and spacing."""
    normalized = _PUNCTUATION_RE.sub("", question.lower().strip())
    normalized = _WHITESPACE_RE.sub(" ", normalized)
    return hashlib.sha256(normalized.encode()).hexdigest()[:16]


@dataclass
class CachedResponse:
    answer: str
    sources: list[dict[str, Any]] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)


def get_cached_response(question: str) -> CachedResponse | None:
    cached = cache.get(CacheNamespace.CHAT_HISTORY, f"response:{hash_question(question)}")
    if cached is not None:
        logger.debug("Response cache hit")
    return cached


def set_cached_response(question: str, answer: str, sources: list[dict[str, Any]]) -> None:
    cache.set(
        CacheNamespace.CHAT_HISTORY,
        f"response:{hash_question(question)}",
        CachedResponse(answer=answer, sources=list(sources)),
        ttl=RESPONSE_TTL,
    )


def clear_expired_responses() -> int:
    return cache.cleanup()


# =============================================================================
# Search cache keys
# =============================================================================

PROMPT_VERSION = "2.1"
INDEX_VERSION = "1"
SCHEMA_VERSION = "1"


def normalize_query(query: str) -> str:
    normalized = unicodedata.normalize("NFKC", query).lower().strip()
    return _WHITESPACE_RE.sub(" ", normalized)


def generate_cache_key(
    query: str,
    semantic_weight: float,
    keyword_weight: float,
    min_semantic_score: float,
    min_keyword_score: float,
    max_results: int,
    user_id: str | None = None,
    model: str = "gpt-4o-mini",
    embedding_model: str = "voyage-3-large",
) -> str:
    """
    Versioned cache key for search results.

    Every parameter that changes the result set is part of the key, along
    with prompt, model, index and schema versions so a deploy that changes
    any of them never serves stale results.
    """
    parts = {
        "q": normalize_query(query),
        "sem": semantic_weight,
        "kw": keyword_weight,
        "minsem": min_semantic_score,
        "minkw": min_keyword_score,
        "max": max_results,
        "user": user_id or "anon",
        "pv": PROMPT_VERSION,
        "m": model,
        "ev": embedding_model,
        "iv": INDEX_VERSION,
        "sv": SCHEMA_VERSION,
    }
    digest = hashlib.sha256(json.dumps(parts, sort_keys=True).encode()).hexdigest()[:16]
    return f"search:{digest}"
