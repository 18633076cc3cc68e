"""In-memory TTL cache for read views (calendar, dashboard, request detail).

Entries are stored under a key and labelled with one or more tags such as
``request:<id>`` or ``pro-calendar:<pro_id>``. Writers invalidate by tag
after mutating the underlying rows, so readers never need to know which
writes affect them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Any

logger = logging.getLogger(__name__)


def request_tag(request_id: str) -> str:
    return f"request:{request_id}"


def conversation_tag(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def pro_calendar_tag(pro_id: str) -> str:
    return f"pro-calendar:{pro_id}"


def pro_dashboard_tag(pro_id: str) -> str:
    return f"pro-dashboard:{pro_id}"


@dataclass
class CacheEntry:
    """A cached view with expiration and invalidation tags."""

    value: Any
    expires_at: float
    tags: frozenset[str] = field(default_factory=frozenset)

    def is_expired(self) -> bool:
        """Check if this entry has expired."""
        return time.time() > self.expires_at


@dataclass
class ViewCacheConfig:
    """Configuration for view caching."""

    max_size: int = 1000  # Maximum cached entries
    ttl_seconds: int = 300
    cleanup_interval_seconds: int = 600  # Cleanup every 10 minutes

    @classmethod
    def from_settings(cls) -> "ViewCacheConfig":
        """Create config from application settings."""
        from src.core.config import get_settings
        settings = get_settings()
        return cls(
            max_size=settings.view_cache_max_size,
            ttl_seconds=settings.view_cache_ttl_seconds,
        )


class ViewCache:
    """Thread-safe in-memory cache for read views with TTL and tag invalidation."""

    def __init__(self, config: ViewCacheConfig | None = None) -> None:
        self.config = config or ViewCacheConfig()
        self._cache: dict[str, CacheEntry] = {}
        self._lock = Lock()
        self._cleanup_task: asyncio.Task | None = None

    async def start_cleanup_task(self) -> None:
        """Start background cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("View cache cleanup task started")

    async def stop_cleanup_task(self) -> None:
        """Stop background cleanup task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("View cache cleanup task stopped")

    async def _cleanup_loop(self) -> None:
        """Background loop to cleanup expired entries."""
        while True:
            await asyncio.sleep(self.config.cleanup_interval_seconds)
            count = self.cleanup()
            if count > 0:
                logger.debug("View cache cleaned up %d expired entries", count)

    def get(self, key: str) -> Any | None:
        """Get a cached view if present and not expired."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None

            if entry.is_expired():
                del self._cache[key]
                return None

            return entry.value

    def set(self, key: str, value: Any, tags: list[str] | tuple[str, ...] = ()) -> None:
        """Cache a view.

        Args:
            key: Cache key.
            value: View to cache.
            tags: Tags used for invalidation. The key itself is always a tag.
        """
        expires_at = time.time() + self.config.ttl_seconds

        with self._lock:
            if len(self._cache) >= self.config.max_size:
                self._evict_oldest()

            self._cache[key] = CacheEntry(
                value=value,
                expires_at=expires_at,
                tags=frozenset((key, *tags)),
            )

    def invalidate(self, *tags: str) -> int:
        """Drop every entry labelled with any of ``tags``.

        Returns:
            Number of entries removed.
        """
        wanted = set(tags)
        with self._lock:
            keys = [k for k, v in self._cache.items() if v.tags & wanted]
            for key in keys:
                del self._cache[key]
        if keys:
            logger.debug("Invalidated %d cached views for tags %s", len(keys), sorted(wanted))
        return len(keys)

    def _evict_oldest(self) -> None:
        """Evict oldest entries to make room. Must be called with lock held."""
        expired_keys = [k for k, v in self._cache.items() if v.is_expired()]
        for key in expired_keys:
            del self._cache[key]

        # If still at capacity, remove oldest 10%
        if len(self._cache) >= self.config.max_size:
            sorted_entries = sorted(self._cache.items(), key=lambda x: x[1].expires_at)
            to_remove = max(1, len(self._cache) // 10)
            for key, _ in sorted_entries[:to_remove]:
                del self._cache[key]
            logger.debug("Evicted %d entries from view cache", to_remove)

    def cleanup(self) -> int:
        """Remove all expired entries."""
        with self._lock:
            expired_keys = [k for k, v in self._cache.items() if v.is_expired()]
            for key in expired_keys:
                del self._cache[key]
            return len(expired_keys)


# Global singleton instance
_view_cache: ViewCache | None = None


def get_view_cache() -> ViewCache:
    """Get or create the global view cache instance."""
    global _view_cache
    if _view_cache is None:
        _view_cache = ViewCache(ViewCacheConfig.from_settings())
    return _view_cache


async def init_view_cache() -> ViewCache:
    """Initialize view cache with cleanup task. Call at app startup."""
    cache = get_view_cache()
    await cache.start_cleanup_task()
    return cache


async def shutdown_view_cache() -> None:
    """Shutdown view cache cleanup task. Call at app shutdown."""
    global _view_cache
    if _view_cache:
        await _view_cache.stop_cleanup_task()
