"""In-memory sliding-window limiter used to throttle login attempts."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque


class InMemoryRateLimiter:
    """Per-key limiter; each key may make `max_requests` per window.

    State lives in the process, so limits are per worker.
    """

    def __init__(self):
        self._hits: dict[str, deque] = defaultdict(deque)
        self._lock = threading.Lock()

    def allow(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, int]:
        """Record a hit for `key`; return (allowed, retry_after_seconds)."""
        now = time.monotonic()
        with self._lock:
            hits = self._hits[key]
            cutoff = now - window_seconds
            while hits and hits[0] < cutoff:
                hits.popleft()
            if len(hits) >= max_requests:
                return False, max(1, int(window_seconds - (now - hits[0])))
            hits.append(now)
        return True, 0
