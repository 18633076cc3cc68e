"""Per-user, per-action rate limiting for mutating endpoints.

Counters live in Redis when ``REDIS_URL`` is configured so that every
instance of the service shares them. Without Redis, a process-local
sliding window is used, which is adequate for a single instance and tests.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock

import redis.asyncio as redis

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""

    max_requests: int = 30  # Maximum requests per window per key
    window_seconds: int = 60  # Time window in seconds
    cleanup_interval_seconds: int = 300  # Cleanup expired entries every 5 minutes

    @classmethod
    def from_settings(cls) -> "RateLimitConfig":
        """Create config from application settings."""
        from src.core.config import get_settings
        settings = get_settings()
        return cls(
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )


@dataclass
class RequestRecord:
    """Record of requests for a key."""

    timestamps: list[float] = field(default_factory=list)

    def prune_old(self, window_seconds: int) -> None:
        """Remove timestamps older than the window."""
        cutoff = time.time() - window_seconds
        self.timestamps = [ts for ts in self.timestamps if ts > cutoff]

    def add_request(self) -> None:
        """Record a new request."""
        self.timestamps.append(time.time())

    def seconds_until_available(self, window_seconds: int, max_requests: int) -> int:
        """Calculate seconds until a new request slot is available."""
        if len(self.timestamps) < max_requests:
            return 0

        oldest_in_window = sorted(self.timestamps)[-max_requests]
        return max(0, int(oldest_in_window + window_seconds - time.time()) + 1)


class RateLimitStorage:
    """Common interface for rate limit backends."""

    def __init__(self, config: RateLimitConfig | None = None) -> None:
        self.config = config or RateLimitConfig()

    async def check_and_increment(
        self,
        key: str,
        max_requests: int | None = None,
        window_seconds: int | None = None,
    ) -> tuple[bool, int, int]:
        """Check rate limit and increment if allowed.

        Args:
            key: Unique identifier, usually ``"<user_id>:<action>"``.
            max_requests: Override max requests (uses config default).
            window_seconds: Override window (uses config default).

        Returns:
            Tuple of (allowed, remaining_requests, retry_after_seconds).
        """
        raise NotImplementedError

    async def start(self) -> None:
        """Start any background work the backend needs."""

    async def stop(self) -> None:
        """Release backend resources."""


class InMemoryRateLimitStorage(RateLimitStorage):
    """Thread-safe in-memory rate limit storage with automatic cleanup."""

    def __init__(self, config: RateLimitConfig | None = None) -> None:
        super().__init__(config)
        self._storage: dict[str, RequestRecord] = defaultdict(RequestRecord)
        self._lock = Lock()
        self._cleanup_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start background cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("Rate limiter cleanup task started")

    async def stop(self) -> None:
        """Stop background cleanup task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("Rate limiter cleanup task stopped")

    async def _cleanup_loop(self) -> None:
        """Background loop to cleanup expired entries."""
        while True:
            await asyncio.sleep(self.config.cleanup_interval_seconds)
            count = await self.cleanup()
            if count > 0:
                logger.debug("Rate limiter cleaned up %d expired entries", count)

    async def check_and_increment(
        self,
        key: str,
        max_requests: int | None = None,
        window_seconds: int | None = None,
    ) -> tuple[bool, int, int]:
        max_req = max_requests or self.config.max_requests
        window = window_seconds or self.config.window_seconds

        with self._lock:
            record = self._storage[key]
            record.prune_old(window)

            current_count = len(record.timestamps)
            if current_count >= max_req:
                retry_after = record.seconds_until_available(window, max_req)
                return (False, 0, retry_after)

            record.add_request()
            return (True, max_req - current_count - 1, 0)

    async def cleanup(self) -> int:
        """Remove keys with no recent requests."""
        window = self.config.window_seconds
        removed = 0

        with self._lock:
            keys_to_remove = []
            for key, record in self._storage.items():
                record.prune_old(window)
                if not record.timestamps:
                    keys_to_remove.append(key)

            for key in keys_to_remove:
                del self._storage[key]
                removed += 1

        return removed


class RedisRateLimitStorage(RateLimitStorage):
    """Fixed-window counters shared across instances through Redis.

    Each window is a single key incremented with INCR; the first increment
    sets the expiry, so a key never outlives its window.
    """

    KEY_PREFIX = "rate_limit"

    def __init__(self, client: redis.Redis, config: RateLimitConfig | None = None) -> None:
        super().__init__(config)
        self.client = client

    @classmethod
    def from_url(cls, url: str, config: RateLimitConfig | None = None) -> "RedisRateLimitStorage":
        """Build a storage backed by the Redis instance at ``url``."""
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        return cls(client, config)

    async def check_and_increment(
        self,
        key: str,
        max_requests: int | None = None,
        window_seconds: int | None = None,
    ) -> tuple[bool, int, int]:
        max_req = max_requests or self.config.max_requests
        window = window_seconds or self.config.window_seconds
        window_index = int(time.time()) // window
        redis_key = f"{self.KEY_PREFIX}:{key}:{window_index}"

        pipe = self.client.pipeline()
        pipe.incr(redis_key)
        pipe.ttl(redis_key)
        count, ttl = await pipe.execute()

        if ttl is None or ttl < 0:
            await self.client.expire(redis_key, window)
            ttl = window

        if count > max_req:
            return (False, 0, max(1, int(ttl)))
        return (True, max_req - count, 0)

    async def stop(self) -> None:
        await self.client.aclose()


# Global singleton instance
_rate_limiter: RateLimitStorage | None = None


def get_rate_limiter() -> RateLimitStorage:
    """Get or create the global rate limiter instance.

    Uses Redis when ``REDIS_URL`` is set, in-memory storage otherwise.
    """
    global _rate_limiter
    if _rate_limiter is None:
        from src.core.config import get_settings
        settings = get_settings()
        config = RateLimitConfig.from_settings()
        if settings.redis_url:
            _rate_limiter = RedisRateLimitStorage.from_url(settings.redis_url, config)
            logger.info("Rate limiter using Redis storage")
        else:
            _rate_limiter = InMemoryRateLimitStorage(config)
            logger.info("Rate limiter using in-memory storage")
    return _rate_limiter


async def init_rate_limiter() -> RateLimitStorage:
    """Initialize rate limiter. Call at app startup."""
    limiter = get_rate_limiter()
    await limiter.start()
    return limiter


async def shutdown_rate_limiter() -> None:
    """Shutdown rate limiter. Call at app shutdown."""
    global _rate_limiter
    if _rate_limiter:
        await _rate_limiter.stop()
        _rate_limiter = None
