"""
Rate Limiting Module

SLIDING WINDOW:
Each key (usually a client IP) keeps the timestamps of its accepted
requests. A request is allowed only if fewer than max_requests of them
are younger than window_seconds:

    now - ts < window_seconds   -> still counts
    otherwise                   -> expired, dropped

A rejected request is NOT recorded, so hammering while limited does not
push the window further out.

CLEANUP:
Expired timestamps are dropped lazily on every check for that key. Keys
nobody calls anymore are removed by cleanup(), which start() runs every
cleanup_interval seconds in a background task.

LIMITATION:
State lives in this process only. N replicas allow N times the budget.
"""

import asyncio
import threading
import time
from typing import Callable, Dict, List, Optional

from config.settings import get_settings
from ragchat.logger import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Per-key sliding-window request counter.

    Usage:
        limiter = RateLimiter(max_requests=60, window_seconds=60)
        if limiter.is_limited(client_ip):
            ...  # reject with 429
    """

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[float] = None,
        cleanup_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            max_requests: Requests allowed per window (defaults to settings)
            window_seconds: Window length in seconds (defaults to settings)
            cleanup_interval: Seconds between background sweeps (defaults to settings)
            clock: Monotonic time source, in seconds
        """
        config = get_settings().rate_limit

        self.max_requests = config.max_requests if max_requests is None else max_requests
        self.window_seconds = config.window_seconds if window_seconds is None else window_seconds
        self.cleanup_interval = config.cleanup_seconds if cleanup_interval is None else cleanup_interval
        self.clock = clock

        for name in ("max_requests", "window_seconds", "cleanup_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        self._requests: Dict[str, List[float]] = {}
        self._lock = threading.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    def _valid(self, timestamps: List[float], now: float) -> List[float]:
        return [ts for ts in timestamps if now - ts < self.window_seconds]

    def is_limited(self, key: str) -> bool:
        """
        Check a request against the key's budget and record it if allowed.

        Returns:
            True if the key already has max_requests requests in the window
            (nothing is recorded), False otherwise (the request is recorded)
        """
        with self._lock:
            now = self.clock()
            valid = self._valid(self._requests.get(key, []), now)

            if len(valid) >= self.max_requests:
                self._requests[key] = valid
                logger.warning("Rate limit exceeded for key: %s", key)
                return True

            valid.append(now)
            self._requests[key] = valid
            return False

    def request_count(self, key: str) -> int:
        """Requests of key still inside the window (read only)."""
        with self._lock:
            return len(self._valid(self._requests.get(key, []), self.clock()))

    def cleanup(self) -> int:
        """
        Drop expired timestamps and forget keys left with none.

        Returns:
            Number of keys removed
        """
        with self._lock:
            now = self.clock()
            removed = 0
            for key in list(self._requests):
                valid = self._valid(self._requests[key], now)
                if valid:
                    self._requests[key] = valid
                else:
                    del self._requests[key]
                    removed += 1

        logger.debug("Rate limit cleanup removed %d keys", removed)
        return removed

    def __len__(self):
        with self._lock:
            return len(self._requests)

    async def _cleanup_loop(self):
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.cleanup()
            except Exception:
                logger.exception("Rate limit cleanup failed")

    async def start(self):
        """Start the periodic cleanup task on the running event loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self):
        """Cancel the periodic cleanup task and wait for it to finish."""
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()
