# backend/app/resilience/circuit_breaker.py
"""
Circuit breaker pattern for external service protection.
Stops calling a failing calendar dependency for a cooldown period.
"""
from dataclasses import dataclass, field
from enum import Enum
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from ..monitoring.prometheus_metrics import prometheus_metrics
from .errors import CircuitOpenError, ExternalAPIError, ExternalAPIErrorType

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Caller mistakes, not dependency health problems.
NON_TRIPPING_TYPES = frozenset(
    {
        ExternalAPIErrorType.AUTHENTICATION,
        ExternalAPIErrorType.AUTHORIZATION,
        ExternalAPIErrorType.VALIDATION,
        ExternalAPIErrorType.NOT_FOUND,
        ExternalAPIErrorType.CONFLICT,
    }
)


def counts_as_failure(exc: BaseException) -> bool:
    if isinstance(exc, ExternalAPIError):
        return exc.type not in NON_TRIPPING_TYPES
    return True


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for a circuit breaker."""

    failure_threshold: int = 5  # Consecutive failures before opening
    success_threshold: int = 3  # Consecutive successes to close from half-open
    recovery_timeout_seconds: float = 60.0  # Time before trying half-open


@dataclass
class CircuitBreaker:
    """
    Circuit breaker for protecting external service calls.

    Usage:
        breaker = CircuitBreaker(name="google_calendar")

        try:
            result = await breaker.call(async_function, *args)
        except CircuitOpenError:
            # Surface "temporarily unavailable"
    """

    name: str
    config: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    clock: Callable[[], float] = time.monotonic
    is_failure: Callable[[BaseException], bool] = counts_as_failure

    # State
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _success_count: int = field(default=0, init=False)
    _opened_at: Optional[float] = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def __post_init__(self) -> None:
        prometheus_metrics.set_circuit_state(self.name, self._state.value)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def _transition(self, new_state: CircuitState) -> None:
        """Caller must hold the lock."""
        old_state = self._state
        self._state = new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = self.clock()
        prometheus_metrics.set_circuit_state(self.name, new_state.value)
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            f"Circuit {self.name}: {old_state.name} -> {new_state.name}",
            extra={
                "circuit": self.name,
                "from_state": old_state.value,
                "to_state": new_state.value,
                "consecutive_failures": self._failure_count,
            },
        )

    def _should_attempt(self) -> bool:
        """Check if we should attempt the call."""
        with self._lock:
            if self._state == CircuitState.OPEN:
                elapsed = self.clock() - (self._opened_at or 0.0)
                if elapsed < self.config.recovery_timeout_seconds:
                    return False
                self._success_count = 0
                self._transition(CircuitState.HALF_OPEN)
            return True

    def _retry_after(self) -> float:
        with self._lock:
            if self._opened_at is None:
                return 0.0
            remaining = self.config.recovery_timeout_seconds - (self.clock() - self._opened_at)
            return max(0.0, remaining)

    def _record_success(self) -> None:
        """Record a successful call."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._failure_count = 0
                    self._success_count = 0
                    self._opened_at = None
                    self._transition(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                # Reset failure count on success
                self._failure_count = 0

    def _record_failure(self) -> None:
        """Record a failed call."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                # Any failure in half-open goes back to open
                self._success_count = 0
                self._failure_count += 1
                self._transition(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED:
                self._failure_count += 1
                if self._failure_count >= self.config.failure_threshold:
                    self._transition(CircuitState.OPEN)

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Execute a function through the circuit breaker.

        Raises:
            CircuitOpenError: If circuit is open and not ready to test
        """
        if not self._should_attempt():
            raise CircuitOpenError(self.name, retry_after=self._retry_after())

        try:
            result = await func(*args, **kwargs)
        except Exception as exc:
            if self.is_failure(exc):
                self._record_failure()
            raise
        self._record_success()
        return result

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        with self._lock:
            self._failure_count = 0
            self._success_count = 0
            self._opened_at = None
            self._transition(CircuitState.CLOSED)

    def metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "consecutive_failures": self._failure_count,
                "consecutive_successes": self._success_count,
                "opened_at": self._opened_at,
            }


class CircuitBreakerRegistry:
    """One breaker per dependency key, created on first use."""

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_config = default_config or CircuitBreakerConfig()
        self._configs: Dict[str, CircuitBreakerConfig] = {}
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def configure(self, key: str, config: CircuitBreakerConfig) -> None:
        with self._lock:
            self._configs[key] = config
            self._breakers.pop(key, None)

    def get(self, key: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(
                    name=key,
                    config=self._configs.get(key, self.default_config),
                    clock=self._clock,
                )
                self._breakers[key] = breaker
            return breaker

    async def execute(self, operation: Callable[[], Awaitable[T]], key: str) -> T:
        return await self.get(key).call(operation)

    def keys(self):
        with self._lock:
            return list(self._breakers.keys())

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            breakers = [self._breakers[key]] if key in self._breakers else []
            if key is None:
                breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()
