from __future__ import annotations

import logging
import math
import time
from threading import RLock
from typing import Callable, Dict, Tuple

from fastapi import Request

from .errors import RateLimited

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class FixedWindowRateLimiter:
    """
    Count requests per key in fixed windows of window_seconds.

    A max_requests of 0 disables limiting. The clock is injectable so tests can
    move time forward.
    """

    message = "Too many authentication attempts, please try again later"

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = RLock()
        self._windows: Dict[str, Tuple[float, int]] = {}

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0

    def hit(self, key: str) -> None:
        """
        Record one request for key.

        Raises:
            RateLimited: key has used up the current window's budget.
        """
        if not self.enabled:
            return
        now = self._clock()
        with self._lock:
            self._evict_expired(now)
            started, count = self._windows.get(key, (now, 0))
            if count >= self.max_requests:
                retry_after = max(1, math.ceil(self.window_seconds - (now - started)))
                logger.warning("Rate limit exceeded for %s (retry in %ss)", key, retry_after)
                raise RateLimited(self.message, retry_after=retry_after)
            self._windows[key] = (started, count + 1)

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, (started, _) in self._windows.items() if now - started >= self.window_seconds]
        for key in expired:
            del self._windows[key]

    @property
    def tracked_clients(self) -> int:
        """Number of clients with an open window."""
        with self._lock:
            return len(self._windows)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


# PUBLIC_INTERFACE
def limit_auth_attempts(request: Request) -> None:
    """FastAPI dependency applying the app's auth limiter to the calling client."""
    limiter: FixedWindowRateLimiter = request.app.state.auth_limiter
    client = request.client.host if request.client else "unknown"
    limiter.hit(client)
