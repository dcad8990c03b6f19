# backend/app/resilience/__init__.py
"""
Resilience primitives shared by every external API call.
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from .classifier import ErrorClassifier, classify, parse_retry_after
from .errors import (
    CircuitOpenError,
    ErrorSeverity,
    ExternalAPIError,
    ExternalAPIErrorType,
)
from .rate_limiter import RateLimitConfig, RateLimitStatus, SlidingWindowRateLimiter
from .registry import ResilienceRegistry
from .retry import BackoffStrategy, RetryExecutor, RetryPolicy

__all__ = [
    "BackoffStrategy",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitState",
    "ErrorClassifier",
    "ErrorSeverity",
    "ExternalAPIError",
    "ExternalAPIErrorType",
    "RateLimitConfig",
    "RateLimitStatus",
    "ResilienceRegistry",
    "RetryExecutor",
    "RetryPolicy",
    "SlidingWindowRateLimiter",
    "classify",
    "parse_retry_after",
]
