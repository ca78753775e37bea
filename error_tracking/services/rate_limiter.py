"""
Per-fingerprint rate limiting for ingestion.

A single misbehaving client in a crash loop can emit thousands of identical
reports per minute. The limiter bounds how many events per fingerprint are
accepted within a window, independently of whether the error group exists.
Rejected events are dropped silently; the ingestion service counts them for
diagnostics.
"""

import threading
import time
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Optional

from error_tracking.services.redis_client import RedisClient
from error_tracking.utils.logging import get_logger

logger = get_logger(__name__)


class RateLimiter(ABC):
    """Base interface for fingerprint rate limiters."""

    async def initialize(self) -> None:
        """Open backend connections. No-op by default."""

    async def close(self) -> None:
        """Release backend connections. No-op by default."""

    @abstractmethod
    async def allow(self, fingerprint: str, window_seconds: int, max_per_window: int) -> bool:
        """
        Record an event for a fingerprint if it fits the current window.

        The check and the increment are a single atomic step.

        Args:
            fingerprint: Error fingerprint
            window_seconds: Window length in seconds
            max_per_window: Maximum accepted events per window

        Returns:
            True if the event is accepted, False if it must be dropped
        """
        pass


class RedisRateLimiter(RateLimiter):
    """
    Fixed-window limiter backed by Redis, shared by every process.

    Each window is a counter ``ratelimit:{fingerprint}:{window_start}``
    whose TTL equals the window, so expired windows clean themselves up.
    """

    KEY_TEMPLATE = "ratelimit:{fingerprint}:{window_start}"

    def __init__(
        self,
        redis_client: Optional[RedisClient] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the limiter.

        Args:
            redis_client: Redis client. A client built from settings is used if None.
            clock: Source of the current Unix time
        """
        self._redis = redis_client or RedisClient()
        self._clock = clock

    async def initialize(self) -> None:
        await self._redis.initialize()

    async def close(self) -> None:
        await self._redis.close()

    def window_key(self, fingerprint: str, window_seconds: int) -> str:
        """Key of the counter for the window containing the current time."""
        now = int(self._clock())
        window_start = now - (now % window_seconds)
        return self.KEY_TEMPLATE.format(fingerprint=fingerprint, window_start=window_start)

    async def allow(self, fingerprint: str, window_seconds: int, max_per_window: int) -> bool:
        key = self.window_key(fingerprint, window_seconds)
        count = await self._redis.increment_with_ttl(key, window_seconds)
        return count <= max_per_window


class InMemoryRateLimiter(RateLimiter):
    """
    Sliding-window limiter for single-process deployments and tests.

    Keeps the timestamps of accepted events per fingerprint. Rejected events
    are not recorded and so do not count against the limit, which lets an
    ongoing issue keep flowing at a steady rate.
    """

    # Seconds between sweeps that drop fingerprints with no recent events
    SWEEP_INTERVAL = 60.0

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._recorded: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._last_sweep = clock()

    async def allow(self, fingerprint: str, window_seconds: int, max_per_window: int) -> bool:
        now = self._clock()
        boundary = now - window_seconds

        with self._lock:
            timestamps = self._recorded[fingerprint]
            while timestamps and timestamps[0] <= boundary:
                timestamps.popleft()

            allowed = len(timestamps) < max_per_window
            if allowed:
                timestamps.append(now)

            if now - self._last_sweep > max(self.SWEEP_INTERVAL, window_seconds):
                self._sweep(boundary)
                self._last_sweep = now

        return allowed

    def _sweep(self, boundary: float) -> None:
        """Forget fingerprints whose newest accepted event is outside the window."""
        stale = [
            fingerprint
            for fingerprint, timestamps in self._recorded.items()
            if not timestamps or timestamps[-1] <= boundary
        ]
        for fingerprint in stale:
            del self._recorded[fingerprint]

    def tracked_fingerprints(self) -> int:
        """Number of fingerprints currently holding window state."""
        with self._lock:
            return len(self._recorded)


def get_rate_limiter() -> RateLimiter:
    """
    Create the rate limiter selected by settings.

    Returns:
        RedisRateLimiter when REDIS_URL is set, InMemoryRateLimiter otherwise
    """
    from error_tracking.config import settings

    if settings.redis_url:
        return RedisRateLimiter(RedisClient(redis_url=settings.redis_url))

    logger.info("REDIS_URL not set, using in-process rate limiter")
    return InMemoryRateLimiter()
