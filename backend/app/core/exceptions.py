# backend/app/core/exceptions.py
"""
Domain-specific exceptions for the booking platform.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException using the class status code."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Booking saga failures


class BookingFailureReason(str, Enum):
    """Caller-facing failure categories of a booking attempt."""

    SLOT_UNAVAILABLE = "slot_unavailable"
    INSUFFICIENT_QUOTA = "insufficient_quota"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    INTERNAL_ERROR = "internal_error"


class BookingFailedException(DomainException):
    """Base class for typed booking failures returned to the caller."""

    reason: BookingFailureReason = BookingFailureReason.INTERNAL_ERROR

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "reason": self.reason.value,
                "details": self.details,
            },
        )


class SlotUnavailableException(BookingFailedException):
    """Raised when the requested slot collides with the admin calendar."""

    status_code = status.HTTP_409_CONFLICT
    reason = BookingFailureReason.SLOT_UNAVAILABLE

    def __init__(self, message: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message or "Time slot is unavailable due to an admin calendar conflict",
            code="SLOT_UNAVAILABLE",
            details=details or {},
        )


class InsufficientQuotaException(BookingFailedException):
    """Raised when the account does not hold enough lesson hours."""

    status_code = status.HTTP_400_BAD_REQUEST
    reason = BookingFailureReason.INSUFFICIENT_QUOTA

    def __init__(self, available_hours: float, required_hours: float):
        super().__init__(
            message="Insufficient quota balance",
            code="INSUFFICIENT_QUOTA",
            details={
                "available_hours": available_hours,
                "required_hours": required_hours,
            },
        )


class UpstreamUnavailableException(BookingFailedException):
    """Raised when the calendar provider cannot be reached; safe to retry later."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    reason = BookingFailureReason.UPSTREAM_UNAVAILABLE

    def __init__(self, retry_after_seconds: Optional[float] = None):
        details: Dict[str, Any] = {}
        if retry_after_seconds is not None:
            details["retry_after_seconds"] = retry_after_seconds
        super().__init__(
            message="The calendar service is temporarily unavailable. Please try again shortly.",
            code="UPSTREAM_UNAVAILABLE",
            details=details,
        )
        self.retry_after_seconds = retry_after_seconds

    def to_http_exception(self) -> HTTPException:
        exc = super().to_http_exception()
        if self.retry_after_seconds is not None:
            exc.headers = {"Retry-After": str(max(1, int(round(self.retry_after_seconds))))}
        return exc


class BookingInternalException(BookingFailedException):
    """Raised for persistence or unexpected failures; carries an opaque support reference."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    reason = BookingFailureReason.INTERNAL_ERROR

    def __init__(self, reference_id: str):
        super().__init__(
            message="We could not complete your booking. Please contact support with the reference id.",
            code="BOOKING_INTERNAL_ERROR",
            details={"reference_id": reference_id},
        )
        self.reference_id = reference_id


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """


class InsufficientQuotaError(RepositoryException):
    """Raised by the ledger primitive when a debit would make a balance negative."""

    def __init__(self, account_id: str, available_hours: float, requested_hours: float):
        super().__init__(
            f"Insufficient quota hours. Available: {available_hours}, Requested: {requested_hours}"
        )
        self.account_id = account_id
        self.available_hours = available_hours
        self.requested_hours = requested_hours
