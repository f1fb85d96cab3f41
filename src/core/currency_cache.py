"""Process-wide TTL cache for shop currency data."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Literal

logger = logging.getLogger(__name__)

CacheKey = Literal["shop_currency", "enabled_currencies"]

CACHE_KEYS: tuple[CacheKey, ...] = ("shop_currency", "enabled_currencies")


@dataclass(frozen=True)
class CacheEntry:
    """A cached value with the time it was stored."""

    value: Any
    stored_at: float


@dataclass
class CacheLookup:
    """Result of a cache read.

    ``fresh`` is False when the entry outlived the TTL; callers may still
    use the stale value when a live fetch fails.
    """

    value: Any
    fresh: bool
    age_seconds: float


@dataclass
class CurrencyCacheConfig:
    """Configuration for currency caching."""

    ttl_seconds: float = 3600  # 1 hour default

    @classmethod
    def from_settings(cls) -> "CurrencyCacheConfig":
        """Create config from application settings."""
        from src.core.config import get_settings
        settings = get_settings()
        return cls(ttl_seconds=settings.currency_cache_ttl_seconds)


class CurrencyCache:
    """Shop currency and enabled-currency snapshots with independent timestamps.

    Writes replace the whole entry (last write wins). Expired entries are
    kept so that a failed refresh can fall back to them.
    """

    def __init__(
        self,
        config: CurrencyCacheConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the currency cache.

        Args:
            config: Optional cache configuration.
            clock: Time source in seconds; injectable for tests.
        """
        self.config = config or CurrencyCacheConfig()
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = Lock()

    def get(self, key: CacheKey) -> CacheLookup | None:
        """Read an entry, fresh or expired.

        Args:
            key: Which snapshot to read.

        Returns:
            CacheLookup, or None if nothing was ever stored.
        """
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            logger.debug("Currency cache miss for %s", key)
            return None

        age = self._clock() - entry.stored_at
        fresh = age < self.config.ttl_seconds
        logger.debug("Currency cache %s for %s (age %.0fs)", "hit" if fresh else "stale", key, age)
        return CacheLookup(value=entry.value, fresh=fresh, age_seconds=age)

    def get_fresh(self, key: CacheKey) -> Any | None:
        """Return the cached value only if it is within the TTL."""
        lookup = self.get(key)
        if lookup is None or not lookup.fresh:
            return None
        return lookup.value

    def set(self, key: CacheKey, value: Any) -> None:
        """Store a snapshot, replacing any previous one."""
        entry = CacheEntry(value=value, stored_at=self._clock())
        with self._lock:
            self._entries[key] = entry
        logger.debug("Cached %s (ttl %ss)", key, self.config.ttl_seconds)

    def invalidate(self, key: CacheKey | None = None) -> None:
        """Drop one snapshot, or all of them when key is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)
        logger.info("Currency cache invalidated (%s)", key or "all")

    def get_stats(self) -> dict:
        """Get cache statistics for monitoring.

        Returns:
            Dictionary with per-key age and freshness.
        """
        now = self._clock()
        with self._lock:
            entries = dict(self._entries)
        stats: dict[str, Any] = {"ttl_seconds": self.config.ttl_seconds}
        for key in CACHE_KEYS:
            entry = entries.get(key)
            if entry is None:
                stats[key] = None
                continue
            age = now - entry.stored_at
            stats[key] = {"age_seconds": round(age, 1), "fresh": age < self.config.ttl_seconds}
        return stats


# Global singleton instance
_currency_cache: CurrencyCache | None = None


def get_currency_cache() -> CurrencyCache:
    """Get or create the global currency cache instance."""
    global _currency_cache
    if _currency_cache is None:
        _currency_cache = CurrencyCache(CurrencyCacheConfig.from_settings())
    return _currency_cache


def init_currency_cache() -> CurrencyCache:
    """Initialize the currency cache. Call at app startup."""
    cache = get_currency_cache()
    logger.info("Currency cache ready (ttl %ss)", cache.config.ttl_seconds)
    return cache


def shutdown_currency_cache() -> None:
    """Drop cached snapshots. Call at app shutdown."""
    global _currency_cache
    if _currency_cache is not None:
        _currency_cache.invalidate()
        _currency_cache = None
