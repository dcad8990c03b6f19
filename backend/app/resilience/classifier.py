# backend/app/resilience/classifier.py
"""
Maps raw transport and API failures onto the ExternalAPIError taxonomy.

This is the only place that inspects status codes, upstream reason strings
or transport exception types.
"""

import asyncio
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
import logging
import socket
from typing import Any, Mapping, Optional

import httpx

from .errors import ExternalAPIError, ExternalAPIErrorType

logger = logging.getLogger(__name__)

RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})
QUOTA_REASONS = frozenset({"quotaExceeded", "dailyLimitExceeded"})

_RETRYABLE_TYPES = frozenset(
    {
        ExternalAPIErrorType.RATE_LIMITED,
        ExternalAPIErrorType.NETWORK,
        ExternalAPIErrorType.SERVER_ERROR,
        ExternalAPIErrorType.TIMEOUT,
    }
)

_NETWORK_EXCEPTIONS = (
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    socket.gaierror,
)


def parse_retry_after(value: Optional[str], *, now: Optional[datetime] = None) -> Optional[float]:
    """Parse a Retry-After header given either as seconds or as an HTTP date."""
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    reference = now or datetime.now(timezone.utc)
    return max(0.0, (when - reference).total_seconds())


def _header(headers: Optional[Mapping[str, Any]], name: str) -> Optional[str]:
    if not headers:
        return None
    if isinstance(headers, httpx.Headers):
        return headers.get(name)
    lowered = name.lower()
    for key, value in headers.items():
        if str(key).lower() == lowered:
            return value
    return None


def _classify_status(status_code: int, reason: Optional[str]) -> ExternalAPIErrorType:
    if status_code == 401:
        return ExternalAPIErrorType.AUTHENTICATION
    if status_code == 403:
        if reason in RATE_LIMIT_REASONS:
            return ExternalAPIErrorType.RATE_LIMITED
        if reason in QUOTA_REASONS:
            return ExternalAPIErrorType.QUOTA_EXCEEDED
        return ExternalAPIErrorType.AUTHORIZATION
    if status_code == 404:
        return ExternalAPIErrorType.NOT_FOUND
    if status_code in (408, 504):
        return ExternalAPIErrorType.TIMEOUT
    if status_code == 409:
        return ExternalAPIErrorType.CONFLICT
    if status_code == 429:
        return ExternalAPIErrorType.RATE_LIMITED
    if status_code >= 500:
        return ExternalAPIErrorType.SERVER_ERROR
    if status_code in (400, 422):
        return ExternalAPIErrorType.VALIDATION
    return ExternalAPIErrorType.UNKNOWN


class ErrorClassifier:
    """Pure mapping from a raised exception to an ExternalAPIError."""

    def classify(self, raw_error: BaseException, context: Optional[Mapping[str, Any]] = None) -> ExternalAPIError:
        if isinstance(raw_error, ExternalAPIError):
            return raw_error

        ctx = dict(context or {})
        ctx.setdefault("error_class", type(raw_error).__name__)

        status_code, reason, headers = self._extract_http(raw_error)
        if status_code is not None:
            error_type = _classify_status(status_code, reason)
            retry_after = None
            if error_type == ExternalAPIErrorType.RATE_LIMITED:
                retry_after = parse_retry_after(_header(headers, "retry-after"))
            if reason:
                ctx.setdefault("reason", reason)
            return ExternalAPIError(
                error_type,
                retryable=error_type in _RETRYABLE_TYPES,
                retry_after=retry_after,
                status_code=status_code,
                context=ctx,
                detail=str(raw_error)[:500],
            )

        if isinstance(raw_error, _NETWORK_EXCEPTIONS):
            return ExternalAPIError(
                ExternalAPIErrorType.NETWORK,
                retryable=True,
                context=ctx,
                detail=str(raw_error)[:500],
            )

        return ExternalAPIError(
            ExternalAPIErrorType.UNKNOWN,
            retryable=False,
            context=ctx,
            detail=str(raw_error)[:500],
        )

    @staticmethod
    def _extract_http(raw_error: BaseException):
        """Return (status_code, reason, headers) if the error carries an HTTP response."""
        if isinstance(raw_error, httpx.HTTPStatusError):
            response = raw_error.response
            return response.status_code, None, response.headers

        status_code = getattr(raw_error, "status_code", None)
        if isinstance(status_code, int):
            return status_code, getattr(raw_error, "reason", None), getattr(raw_error, "headers", None)

        return None, None, None


default_classifier = ErrorClassifier()


def classify(raw_error: BaseException, context: Optional[Mapping[str, Any]] = None) -> ExternalAPIError:
    return default_classifier.classify(raw_error, context)
