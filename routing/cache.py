"""
Purpose: Expiring cache of resolved routes (RouteCache).
What it does:
- Keys are derived from the query: profile + both endpoints quantized to 6 decimals
  (~11 cm), so near-identical queries share an entry without exploding the key space.
- Each entry carries its own expiry. An expired entry is never returned; it is
  dropped when read (lazy) or by purge_expired() (periodic).
- A hard cap on entry count evicts the oldest entries (by creation time, not LRU).
- Optionally writes through to a KeyValueStore so entries survive restarts.
  Any store failure is logged and treated as a miss: correctness never depends on it.

All mutations happen under one lock so the cache can be shared by concurrent callers.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .models import CacheEntry, RouteQuery, RouteResult
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

CACHE_PREFIX = "route_cache_"
DEFAULT_TTL_S = 24 * 60 * 60
DEFAULT_MAX_ENTRIES = 1000
KEY_PRECISION = 6


class CacheError(Exception):
    """Raised when a persisted cache entry cannot be decoded."""
    pass


@dataclass(frozen=True)
class CacheStats:
    count: int
    approximate_byte_size: int


def _quantize(value: float, precision: int) -> str:
    # + 0.0 turns -0.0 into 0.0 so tiny negatives share a key with zero
    return f"{round(value, precision) + 0.0:.{precision}f}"


def make_cache_key(query: RouteQuery, precision: int = KEY_PRECISION) -> str:
    origin = f"{_quantize(query.origin.latitude, precision)},{_quantize(query.origin.longitude, precision)}"
    destination = (
        f"{_quantize(query.destination.latitude, precision)},{_quantize(query.destination.longitude, precision)}"
    )
    return f"{CACHE_PREFIX}{query.profile.provider_slug}_{origin}_{destination}"


def _encode(entry: CacheEntry) -> bytes:
    return json.dumps(entry.to_dict(), separators=(",", ":")).encode("utf-8")


def _decode(raw: bytes) -> CacheEntry:
    try:
        return CacheEntry.from_dict(json.loads(raw.decode("utf-8")))
    except (ValueError, KeyError, TypeError) as exc:
        raise CacheError(f"corrupt cache entry: {exc}") from exc


class RouteCache:
    def __init__(
        self,
        *,
        default_ttl_s: float = DEFAULT_TTL_S,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if default_ttl_s <= 0:
            raise ValueError("default_ttl_s must be > 0")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")

        self.default_ttl_s = default_ttl_s
        self.max_entries = max_entries
        self.store = store
        self._clock = clock
        self._lock = threading.Lock()
        # insertion order == creation order, put() re-inserts on overwrite
        self._entries: Dict[str, CacheEntry] = {}

    # --- Public API ---

    def get(self, key: str) -> Optional[RouteResult]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._read_through(key)
                if entry is not None and not entry.is_expired(now):
                    self._insert(key, entry)
                    return entry.result

            if entry is None:
                logger.debug("Cache miss for %s", key)
                return None

            if entry.is_expired(now):
                logger.debug("Cache entry expired for %s", key)
                self._remove(key)
                return None

            logger.debug("Cache hit for %s", key)
            return entry.result

    def put(self, key: str, result: RouteResult, ttl_s: Optional[float] = None) -> CacheEntry:
        ttl = self.default_ttl_s if ttl_s is None else ttl_s
        if ttl <= 0:
            raise ValueError("ttl_s must be > 0")

        now = self._clock()
        entry = CacheEntry(result=result, created_at=now, expires_at=now + ttl)
        with self._lock:
            self._insert(key, entry)
            self._write_through(key, entry)
            self._evict_overflow()
        return entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._remove(key)

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            if self.store is not None:
                try:
                    persisted = self.store.keys(CACHE_PREFIX)
                    for key in persisted:
                        self.store.delete(key)
                    count = max(count, len(persisted))
                except Exception as exc:
                    logger.warning("Could not clear persisted routes: %s", exc)
        logger.info("Cleared %s cached routes", count)

    def purge_expired(self) -> int:
        """
        Drop every expired entry. Returns how many were removed.
        """
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                self._remove(key)
        if expired:
            logger.debug("Purged %s expired cache entries", len(expired))
        return len(expired)

    def load_persisted(self) -> int:
        """
        Warm the in-memory map from the store. Returns how many live entries were loaded.
        """
        if self.store is None:
            return 0

        now = self._clock()
        loaded = 0
        with self._lock:
            try:
                keys = self.store.keys(CACHE_PREFIX)
            except Exception as exc:
                logger.warning("Could not list persisted routes, starting cold: %s", exc)
                return 0

            for key in keys:
                entry = self._read_through(key)
                if entry is None:
                    continue
                if entry.is_expired(now):
                    self._remove(key)
                    continue
                self._insert(key, entry)
                loaded += 1

            # insertion above followed store order, restore creation order
            self._entries = dict(sorted(self._entries.items(), key=lambda item: item[1].created_at))
            self._evict_overflow()

        logger.info("Loaded %s persisted routes", loaded)
        return loaded

    def stats(self) -> CacheStats:
        with self._lock:
            size = sum(len(key) + len(_encode(entry)) for key, entry in self._entries.items())
            return CacheStats(count=len(self._entries), approximate_byte_size=size)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    # --- Internal helpers (caller holds the lock) ---

    def _insert(self, key: str, entry: CacheEntry) -> None:
        self._entries.pop(key, None)
        self._entries[key] = entry

    def _remove(self, key: str) -> None:
        self._entries.pop(key, None)
        if self.store is None:
            return
        try:
            self.store.delete(key)
        except Exception as exc:
            logger.warning("Could not delete persisted route %s: %s", key, exc)

    def _evict_overflow(self) -> None:
        overflow = len(self._entries) - self.max_entries
        if overflow <= 0:
            return
        oldest = sorted(self._entries, key=lambda k: self._entries[k].created_at)[:overflow]
        for key in oldest:
            self._remove(key)
        logger.debug("Evicted %s oldest cache entries (cap %s)", overflow, self.max_entries)

    def _read_through(self, key: str) -> Optional[CacheEntry]:
        if self.store is None:
            return None
        try:
            raw = self.store.get(key)
            if raw is None:
                return None
            return _decode(raw)
        except Exception as exc:
            logger.warning("Error reading cached route %s: %s", key, exc)
            return None

    def _write_through(self, key: str, entry: CacheEntry) -> None:
        if self.store is None:
            return
        try:
            self.store.set(key, _encode(entry))
        except Exception as exc:
            logger.warning("Error caching route %s: %s", key, exc)
