"""
Prometheus metrics module for the booking platform.

Service timings come from the @measure_operation decorator; the resilience
layer and the booking saga publish their own counters and gauges here.
"""

from threading import Lock
from time import monotonic
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "booking_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

service_operations_total = Counter(
    "booking_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "booking_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

# External dependency instrumentation
external_api_errors_total = Counter(
    "booking_external_api_errors_total",
    "Classified failures returned by external dependencies",
    ["dependency", "error_type"],
    registry=REGISTRY,
)

external_api_retries_total = Counter(
    "booking_external_api_retries_total",
    "Retries scheduled against external dependencies",
    ["dependency", "error_type"],
    registry=REGISTRY,
)

circuit_breaker_state = Gauge(
    "booking_circuit_breaker_state",
    "Circuit breaker state per dependency (0=closed, 1=half_open, 2=open)",
    ["dependency"],
    registry=REGISTRY,
)

rate_limit_waits_total = Counter(
    "booking_rate_limit_waits_total",
    "Number of calls that had to wait for a rate limit window",
    ["dependency"],
    registry=REGISTRY,
)

# Booking saga instrumentation
booking_saga_outcomes_total = Counter(
    "booking_saga_outcomes_total",
    "Terminal outcomes of booking attempts",
    ["outcome"],  # confirmed | slot_unavailable | insufficient_quota | upstream_unavailable | internal_error
    registry=REGISTRY,
)

booking_saga_compensations_total = Counter(
    "booking_saga_compensations_total",
    "Compensating actions executed after a failed booking attempt",
    ["action", "result"],  # result: success | failed
    registry=REGISTRY,
)

_CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None
    _cache_ts: Optional[float] = None
    _cache_ttl_seconds: float = 1.0

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'BookingOrchestrator')
            operation: Operation/method name (e.g., 'book_lesson')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_external_error(dependency: str, error_type: str) -> None:
        external_api_errors_total.labels(dependency=dependency, error_type=error_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_retry(dependency: str, error_type: str) -> None:
        external_api_retries_total.labels(dependency=dependency, error_type=error_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def set_circuit_state(dependency: str, state: str) -> None:
        """Publish a breaker state ('closed', 'half_open' or 'open')."""
        circuit_breaker_state.labels(dependency=dependency).set(_CIRCUIT_STATE_VALUES.get(state, 0))
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_rate_limit_wait(dependency: str) -> None:
        rate_limit_waits_total.labels(dependency=dependency).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_booking_outcome(outcome: str) -> None:
        booking_saga_outcomes_total.labels(outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_compensation(action: str, result: str) -> None:
        booking_saga_compensations_total.labels(action=action, result=result).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """
        Generate Prometheus metrics in exposition format.

        Returns:
            Metrics data in Prometheus text format
        """
        now = monotonic()
        payload = PrometheusMetrics._cache_payload
        ts = PrometheusMetrics._cache_ts

        if payload is not None and ts is not None and (now - ts) <= PrometheusMetrics._cache_ttl_seconds:
            return payload

        with PrometheusMetrics._cache_lock:
            payload = PrometheusMetrics._cache_payload
            ts = PrometheusMetrics._cache_ts
            if payload is None or ts is None or (now - ts) > PrometheusMetrics._cache_ttl_seconds:
                PrometheusMetrics._cache_payload = cast(bytes, generate_latest(REGISTRY))
                PrometheusMetrics._cache_ts = monotonic()
                payload = PrometheusMetrics._cache_payload

        return cast(bytes, payload)

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        """Invalidate cached metrics so next scrape refreshes."""
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None


# Singleton instance
prometheus_metrics = PrometheusMetrics()
