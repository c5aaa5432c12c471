"""Fixed-window request counter keyed by client address.

Best effort and per process: counts are not shared between workers or
instances.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

from ..config import CONFIG, RateLimitConfig

logger = logging.getLogger("penguin_brain.rate_limit")


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Bounded, time-windowed counter store with periodic eviction."""

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CONFIG.rate_limit
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock() + self.config.sweep_interval_seconds

    def allow(self, key: str) -> bool:
        """Count a request for ``key``; return False once the window is full."""

        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                if window is None and len(self._windows) >= self.config.max_keys:
                    self._evict_one()
                self._windows[key] = _Window(count=1, reset_at=now + self.config.window_seconds)
                return True
            if window.count >= self.config.max_requests:
                return False
            window.count += 1
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def _sweep(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if now > window.reset_at]
        for key in expired:
            del self._windows[key]
        self._next_sweep = now + self.config.sweep_interval_seconds
        if expired:
            logger.debug("Rate limiter swept %d expired windows", len(expired))

    def _evict_one(self) -> None:
        oldest = min(self._windows, key=lambda k: self._windows[k].reset_at)
        del self._windows[oldest]


def client_ip_from_headers(headers: Mapping[str, str], fallback: Optional[str] = None) -> str:
    """Resolve the caller address behind Cloudflare or a reverse proxy."""

    cf_ip = headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return fallback or "unknown"


RATE_LIMIT_MESSAGE = "Too many requests. Please try again later."

__all__ = ["RATE_LIMIT_MESSAGE", "RateLimiter", "client_ip_from_headers"]
