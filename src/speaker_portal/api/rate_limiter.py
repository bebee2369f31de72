"""Per-client sliding-window rate limiting for the HTTP routes."""

import asyncio
import time
from typing import Dict, List, Optional

from fastapi import Request
from structlog import get_logger

logger = get_logger()

# Paths that are never rate limited.
EXEMPT_PATHS = ("/health", "/metrics")


class RateLimitExceeded(Exception):
    """Raised when a client exceeds its request budget."""

    def __init__(self, message: str, retry_after: int) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RateLimiter:
    """Sliding-window limiter keyed by client address."""

    def __init__(self, rate_limit: int = 100, time_window: int = 900):
        self.rate_limit = rate_limit
        self.time_window = time_window  # in seconds
        self.requests: Dict[str, List[float]] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None
        logger.info(
            "rate_limiter_initialized",
            rate_limit=rate_limit,
            time_window=time_window
        )

    async def start(self):
        """Start the periodic cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._periodic_cleanup())

    async def stop(self):
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    def _prune(self, key: str, now: float) -> List[float]:
        cutoff_time = now - self.time_window
        kept = [ts for ts in self.requests.get(key, []) if ts > cutoff_time]
        if kept:
            self.requests[key] = kept
        else:
            self.requests.pop(key, None)
        return kept

    async def _periodic_cleanup(self):
        """Drop timestamps that left the window for every key."""
        while True:
            try:
                await asyncio.sleep(self.time_window)
                async with self._lock:
                    now = time.time()
                    for key in list(self.requests.keys()):
                        self._prune(key, now)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("rate_limiter_cleanup_error", error=str(e))

    async def check_rate_limit(self, key: str) -> None:
        now = time.time()
        async with self._lock:
            timestamps = self._prune(key, now)
            if len(timestamps) >= self.rate_limit:
                retry_after = max(1, int(timestamps[0] + self.time_window - now))
                logger.warning(
                    "rate_limit_exceeded",
                    key=key,
                    current_requests=len(timestamps),
                    rate_limit=self.rate_limit
                )
                raise RateLimitExceeded(
                    "Too many requests from this client, please try again later.",
                    retry_after=retry_after,
                )
            self.requests.setdefault(key, []).append(now)

    async def get_remaining_requests(self, key: str) -> int:
        async with self._lock:
            return max(0, self.rate_limit - len(self._prune(key, time.time())))


async def rate_limit_middleware(
    request: Request,
    rate_limiter: Optional[RateLimiter] = None
) -> None:
    """Charge the request against its client's budget."""
    if rate_limiter is None or request.url.path in EXEMPT_PATHS:
        return

    client_ip = request.client.host if request.client else "unknown"
    await rate_limiter.check_rate_limit(client_ip)
