# backend/app/resilience/rate_limiter.py
"""
Sliding-window admission control keyed by dependency.

Callers for the same key queue on a per-key asyncio lock, so when the window
is full exactly one waiter sleeps until the oldest request leaves the window
and is then re-checked; the rest stay queued behind it in arrival order.
"""

import asyncio
from collections import deque
from dataclasses import dataclass
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int = 100
    window_seconds: float = 60.0


@dataclass(frozen=True)
class RateLimitStatus:
    remaining: int
    reset_at: float  # clock time at which the oldest request leaves the window

    def to_dict(self) -> Dict[str, float]:
        return {"remaining": self.remaining, "reset_at": self.reset_at}


class SlidingWindowRateLimiter:
    def __init__(
        self,
        default_config: Optional[RateLimitConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.default_config = default_config or RateLimitConfig()
        self._configs: Dict[str, RateLimitConfig] = {}
        self._windows: Dict[str, Deque[float]] = {}
        self._waiters: Dict[str, asyncio.Lock] = {}
        self._state_lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep

    def configure(self, key: str, config: RateLimitConfig) -> None:
        with self._state_lock:
            self._configs[key] = config

    def config_for(self, key: str) -> RateLimitConfig:
        return self._configs.get(key, self.default_config)

    async def acquire(self, key: str) -> None:
        """Block until a request for ``key`` is admitted, then record it."""
        lock = self._waiters.setdefault(key, asyncio.Lock())
        async with lock:
            while True:
                wait = self._try_admit(key)
                if wait is None:
                    return
                prometheus_metrics.record_rate_limit_wait(key)
                logger.warning(
                    "rate_limit_wait",
                    extra={"key": key, "wait_seconds": round(wait, 3)},
                )
                await self._sleep(wait)

    def status(self, key: str) -> RateLimitStatus:
        config = self.config_for(key)
        with self._state_lock:
            now = self._clock()
            window = self._prune(key, now, config)
            remaining = max(0, config.max_requests - len(window))
            reset_at = window[0] + config.window_seconds if window else now
        return RateLimitStatus(remaining=remaining, reset_at=reset_at)

    def keys(self):
        with self._state_lock:
            return list(self._windows.keys())

    def _try_admit(self, key: str) -> Optional[float]:
        """Record a request and return None, or return seconds until a slot frees."""
        config = self.config_for(key)
        with self._state_lock:
            now = self._clock()
            window = self._prune(key, now, config)
            if len(window) < config.max_requests:
                window.append(now)
                return None
            return max(0.0, window[0] + config.window_seconds - now)

    def _prune(self, key: str, now: float, config: RateLimitConfig) -> Deque[float]:
        window = self._windows.setdefault(key, deque())
        cutoff = now - config.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()
        return window
