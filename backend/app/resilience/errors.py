# backend/app/resilience/errors.py
"""
Closed error taxonomy for calls to external APIs.

Every failure coming back from an external dependency is turned into exactly
one ``ExternalAPIError`` by the classifier. Retry, circuit breaking and the
user-facing messages all key off ``ExternalAPIError.type``; nothing else in
the codebase looks at status codes or upstream error text.
"""

from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional


class ExternalAPIErrorType(str, Enum):
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RATE_LIMITED = "rateLimited"
    QUOTA_EXCEEDED = "quotaExceeded"
    NETWORK = "network"
    VALIDATION = "validation"
    NOT_FOUND = "notFound"
    CONFLICT = "conflict"
    SERVER_ERROR = "serverError"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


ERROR_SEVERITY: Mapping[ExternalAPIErrorType, ErrorSeverity] = MappingProxyType(
    {
        ExternalAPIErrorType.AUTHENTICATION: ErrorSeverity.HIGH,
        ExternalAPIErrorType.AUTHORIZATION: ErrorSeverity.HIGH,
        ExternalAPIErrorType.RATE_LIMITED: ErrorSeverity.MEDIUM,
        ExternalAPIErrorType.QUOTA_EXCEEDED: ErrorSeverity.CRITICAL,
        ExternalAPIErrorType.NETWORK: ErrorSeverity.MEDIUM,
        ExternalAPIErrorType.VALIDATION: ErrorSeverity.LOW,
        ExternalAPIErrorType.NOT_FOUND: ErrorSeverity.LOW,
        ExternalAPIErrorType.CONFLICT: ErrorSeverity.MEDIUM,
        ExternalAPIErrorType.SERVER_ERROR: ErrorSeverity.HIGH,
        ExternalAPIErrorType.TIMEOUT: ErrorSeverity.MEDIUM,
        ExternalAPIErrorType.UNKNOWN: ErrorSeverity.MEDIUM,
    }
)

USER_MESSAGES: Mapping[ExternalAPIErrorType, str] = MappingProxyType(
    {
        ExternalAPIErrorType.AUTHENTICATION: "Calendar authentication failed. Please reconnect your calendar.",
        ExternalAPIErrorType.AUTHORIZATION: "Access to the calendar was denied.",
        ExternalAPIErrorType.RATE_LIMITED: "Too many requests. Please wait a moment and try again.",
        ExternalAPIErrorType.QUOTA_EXCEEDED: "The calendar service quota has been exceeded. Please try again later.",
        ExternalAPIErrorType.NETWORK: "Network error. Please check your connection and try again.",
        ExternalAPIErrorType.VALIDATION: "The calendar rejected the request data.",
        ExternalAPIErrorType.NOT_FOUND: "The requested calendar resource was not found.",
        ExternalAPIErrorType.CONFLICT: "The calendar reported a conflicting change.",
        ExternalAPIErrorType.SERVER_ERROR: "The calendar service is experiencing problems. Please try again later.",
        ExternalAPIErrorType.TIMEOUT: "The calendar service took too long to respond. Please try again.",
        ExternalAPIErrorType.UNKNOWN: "An unexpected error occurred. Please try again.",
    }
)


class ExternalAPIError(Exception):
    """
    A classified failure from an external dependency.

    Instances are immutable once constructed: every attribute is exposed as a
    read-only property and ``context`` is a read-only mapping.
    """

    __slots__ = ("_type", "_retryable", "_retry_after", "_status_code", "_context", "_detail")

    def __init__(
        self,
        type: ExternalAPIErrorType,
        *,
        retryable: bool,
        retry_after: Optional[float] = None,
        status_code: Optional[int] = None,
        context: Optional[Mapping[str, Any]] = None,
        detail: str = "",
    ) -> None:
        self._type = ExternalAPIErrorType(type)
        self._retryable = bool(retryable)
        self._retry_after = retry_after
        self._status_code = status_code
        self._context = MappingProxyType(dict(context or {}))
        self._detail = detail
        super().__init__(f"{self._type.value}: {detail}" if detail else self._type.value)

    @property
    def type(self) -> ExternalAPIErrorType:
        return self._type

    @property
    def retryable(self) -> bool:
        return self._retryable

    @property
    def retry_after(self) -> Optional[float]:
        """Seconds the upstream asked us to wait, if it said so."""
        return self._retry_after

    @property
    def status_code(self) -> Optional[int]:
        return self._status_code

    @property
    def context(self) -> Mapping[str, Any]:
        return self._context

    @property
    def detail(self) -> str:
        """Diagnostic text for logs. Never shown to end users."""
        return self._detail

    @property
    def severity(self) -> ErrorSeverity:
        return ERROR_SEVERITY[self._type]

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self._type]

    def to_dict(self) -> dict:
        return {
            "type": self._type.value,
            "retryable": self._retryable,
            "retry_after": self._retry_after,
            "status_code": self._status_code,
            "severity": self.severity.value,
            "context": dict(self._context),
        }

    def __repr__(self) -> str:
        return (
            f"ExternalAPIError(type={self._type.value!r}, retryable={self._retryable}, "
            f"status_code={self._status_code}, retry_after={self._retry_after})"
        )


class CircuitOpenError(Exception):
    """Raised when attempting to call through an open circuit."""

    def __init__(self, name: str, retry_after: Optional[float] = None):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit {name} is OPEN")

