# backend/app/resilience/retry.py
"""
Bounded retry with fixed, linear or exponential backoff.

All delays are in seconds. ``retry_number`` is 1-based: the first retry
(second attempt) is retry 1.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
import logging
import random
import threading
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Mapping, Optional, TypeVar

from ..monitoring.prometheus_metrics import prometheus_metrics
from .classifier import ErrorClassifier
from .errors import CircuitOpenError, ExternalAPIErrorType

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_RATIO = 0.1

DEFAULT_RETRYABLE_TYPES: FrozenSet[ExternalAPIErrorType] = frozenset(
    {
        ExternalAPIErrorType.RATE_LIMITED,
        ExternalAPIErrorType.NETWORK,
        ExternalAPIErrorType.SERVER_ERROR,
        ExternalAPIErrorType.TIMEOUT,
    }
)


class BackoffStrategy(str, Enum):
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration for one class of external calls."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    retryable_types: FrozenSet[ExternalAPIErrorType] = field(default=DEFAULT_RETRYABLE_TYPES)

    def base_delay_for(self, retry_number: int) -> float:
        """Delay before jitter for the given 1-based retry."""
        if self.backoff == BackoffStrategy.FIXED:
            return self.base_delay
        if self.backoff == BackoffStrategy.LINEAR:
            return min(self.base_delay * retry_number, self.max_delay)
        return min(self.base_delay * (2 ** (retry_number - 1)), self.max_delay)


@dataclass
class RetryStats:
    attempts: int = 0
    retries: int = 0
    successes: int = 0
    failures: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "attempts": self.attempts,
            "retries": self.retries,
            "successes": self.successes,
            "failures": self.failures,
        }


class RetryExecutor:
    """
    Runs an async operation, retrying classified transient failures.

    Attempt counting is local to each ``run`` call so concurrent runs for the
    same key never share state; the per-key totals kept for observability are
    updated under a lock.
    """

    def __init__(
        self,
        default_policy: Optional[RetryPolicy] = None,
        *,
        classifier: Optional[ErrorClassifier] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.default_policy = default_policy or RetryPolicy()
        self._classifier = classifier or ErrorClassifier()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._stats: Dict[str, RetryStats] = {}
        self._lock = threading.Lock()

    def compute_delay(self, policy: RetryPolicy, retry_number: int, retry_after: Optional[float] = None) -> float:
        if retry_after is not None:
            return retry_after
        delay = policy.base_delay_for(retry_number)
        if policy.backoff == BackoffStrategy.EXPONENTIAL:
            jitter = delay * JITTER_RATIO * (2 * self._rng.random() - 1)
            delay = min(max(0.0, delay + jitter), policy.max_delay)
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
        *,
        key: str = "default",
        context: Optional[Mapping[str, Any]] = None,
    ) -> T:
        """
        Execute ``operation`` until it succeeds or the policy gives up.

        Raises:
            ExternalAPIError: the classified final failure
            CircuitOpenError: passed through untouched, never retried
        """
        policy = policy or self.default_policy
        retry_number = 0
        while True:
            self._bump(key, attempts=1)
            try:
                result = await operation()
            except CircuitOpenError:
                self._bump(key, failures=1)
                raise
            except Exception as exc:
                error = self._classifier.classify(exc, {"key": key, **dict(context or {})})
                prometheus_metrics.record_external_error(key, error.type.value)

                eligible = error.retryable and error.type in policy.retryable_types
                if not eligible or retry_number >= policy.max_retries:
                    self._bump(key, failures=1)
                    if eligible:
                        logger.error(
                            "external_call_retries_exhausted",
                            extra={"key": key, "error_type": error.type.value, "attempts": retry_number + 1},
                        )
                    if error is exc:
                        raise
                    raise error from exc

                retry_number += 1
                delay = self.compute_delay(policy, retry_number, error.retry_after)
                self._bump(key, retries=1)
                prometheus_metrics.record_retry(key, error.type.value)
                logger.warning(
                    "external_call_retry",
                    extra={
                        "key": key,
                        "error_type": error.type.value,
                        "retry_number": retry_number,
                        "delay_seconds": round(delay, 3),
                    },
                )
                await self._sleep(delay)
                continue

            self._bump(key, successes=1)
            return result

    def stats(self, key: str) -> Dict[str, int]:
        with self._lock:
            return self._stats.get(key, RetryStats()).to_dict()

    def _bump(self, key: str, **counts: int) -> None:
        with self._lock:
            stats = self._stats.setdefault(key, RetryStats())
            for name, amount in counts.items():
                setattr(stats, name, getattr(stats, name) + amount)
