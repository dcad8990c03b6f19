# backend/app/resilience/registry.py
"""
Keyed registry that owns all shared resilience state.

One instance is built per application and injected into the services that
talk to external APIs. ``call`` composes the three guards in a fixed order:
the rate limiter admits the call, the circuit breaker checks dependency
health, and the retry executor absorbs transient failures.

The limiter admits each logical call once. Retry attempts made inside an
admitted call do not take further slots from the window, so a call that is
retried ``max_retries`` times can send up to ``max_retries + 1`` requests
upstream while counting as a single request against the limit. Retry pacing
comes from the backoff and any ``Retry-After`` hint instead.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

from ..core.config import Settings
from .circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from .classifier import ErrorClassifier
from .rate_limiter import RateLimitConfig, SlidingWindowRateLimiter
from .retry import BackoffStrategy, RetryExecutor, RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResilienceRegistry:
    def __init__(
        self,
        *,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        retry_executor: Optional[RetryExecutor] = None,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self.classifier = classifier or ErrorClassifier()
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self.breakers = breakers or CircuitBreakerRegistry()
        self.retry_executor = retry_executor or RetryExecutor(classifier=self.classifier)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> "ResilienceRegistry":
        classifier = ErrorClassifier()
        return cls(
            rate_limiter=SlidingWindowRateLimiter(
                RateLimitConfig(
                    max_requests=settings.calendar_rate_limit_max_requests,
                    window_seconds=settings.calendar_rate_limit_window_seconds,
                ),
                clock=clock,
                sleep=sleep,
            ),
            breakers=CircuitBreakerRegistry(
                CircuitBreakerConfig(
                    failure_threshold=settings.calendar_breaker_failure_threshold,
                    success_threshold=settings.calendar_breaker_success_threshold,
                    recovery_timeout_seconds=settings.calendar_breaker_recovery_timeout_seconds,
                ),
                clock=clock,
            ),
            retry_executor=RetryExecutor(
                RetryPolicy(
                    max_retries=settings.calendar_retry_max_retries,
                    base_delay=settings.calendar_retry_base_delay_seconds,
                    max_delay=settings.calendar_retry_max_delay_seconds,
                    backoff=BackoffStrategy(settings.calendar_retry_backoff),
                ),
                classifier=classifier,
                sleep=sleep,
            ),
            classifier=classifier,
        )

    async def call(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
        *,
        context: Optional[Mapping[str, Any]] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> T:
        """
        Run ``operation`` under the limiter, breaker and retry executor for ``key``.

        Each retry attempt passes through the breaker again, so a circuit that
        opens part-way through a retry loop stops the remaining attempts.

        Raises:
            ExternalAPIError: classified failure after retries are exhausted
            CircuitOpenError: the dependency's circuit is open
        """
        await self.rate_limiter.acquire(key)
        breaker = self.breakers.get(key)

        async def guarded() -> T:
            return await breaker.call(self._classified(key, operation, context))

        return await self.retry_executor.run(guarded, policy, key=key, context=context)

    def _classified(self, key: str, operation, context):
        """Wrap ``operation`` so the breaker sees ExternalAPIError, not raw transport errors."""

        async def run() -> Any:
            try:
                return await operation()
            except Exception as exc:
                error = self.classifier.classify(exc, {"key": key, **dict(context or {})})
                if error is exc:
                    raise
                raise error from exc

        return run

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        keys = set(self.breakers.keys()) | set(self.rate_limiter.keys())
        result: Dict[str, Dict[str, Any]] = {}
        for key in sorted(keys):
            result[key] = {
                "circuit": self.breakers.get(key).metrics(),
                "rate_limit": self.rate_limiter.status(key).to_dict(),
                "retries": self.retry_executor.stats(key),
            }
        return result
