# backend/app/services/booking_orchestrator.py
"""
Booking Orchestrator for the booking platform

Turns a lesson-booking request into consistent state across the external
calendars, the booking store and the quota ledger:

    received -> conflict checked -> quota prechecked -> events created
             -> persisted -> quota consumed (confirmed)

Steps run strictly one after another. Every step with a side effect pushes
its undo action onto a CompensationStack; when a later step fails the stack
unwinds in reverse, cancelling calendar events before the booking record is
marked cancelled, so no calendar event outlives the booking that refers to
it.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, List, Optional, Tuple

import ulid

from ..core.exceptions import (
    BookingFailedException,
    BookingInternalException,
    InsufficientQuotaError,
    InsufficientQuotaException,
    NotFoundException,
    SlotUnavailableException,
    UpstreamUnavailableException,
    ValidationException,
)
from ..integrations.google_calendar_client import CalendarEventData
from ..models.booking import (
    Booking,
    BookingStatus,
    CalendarEventRef,
    CalendarEventStatus,
    CalendarOwnerRole,
)
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_store import SqlAlchemyBookingStore
from ..resilience.errors import CircuitOpenError, ExternalAPIError
from .base import BaseService
from .booking_notification_service import BookingNotificationService
from .calendar_service import CalendarService
from .conflict_detector import ConflictDetector
from .quota_ledger import QuotaLedger
from .saga import CompensationReport, CompensationStack

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 60
DEFAULT_LESSON_TYPE = "Standard"
DEFAULT_LOCATION = "TBD"
ROLLBACK_CREDIT_REASON = "saga_rollback"
ADMIN_CANCEL_CREDIT_REASON = "admin_cancellation"


@dataclass(frozen=True)
class BookingCommand:
    """A normalised booking request."""

    account_id: str
    start_at: datetime
    end_at: datetime
    lesson_type: str = DEFAULT_LESSON_TYPE
    location: str = DEFAULT_LOCATION
    notes: Optional[str] = None
    user_calendar_id: str = "primary"
    buffer_minutes: Optional[int] = None

    @classmethod
    def build(
        cls,
        account_id: str,
        start_at: datetime,
        *,
        end_at: Optional[datetime] = None,
        duration_minutes: Optional[int] = None,
        lesson_type: Optional[str] = None,
        location: Optional[str] = None,
        notes: Optional[str] = None,
        user_calendar_id: Optional[str] = None,
        buffer_minutes: Optional[int] = None,
    ) -> "BookingCommand":
        """Apply the request defaults: one hour, a Standard lesson, location TBD."""
        if start_at.tzinfo is None:
            start_at = start_at.replace(tzinfo=timezone.utc)
        if end_at is None:
            end_at = start_at + timedelta(minutes=duration_minutes or DEFAULT_DURATION_MINUTES)
        elif end_at.tzinfo is None:
            end_at = end_at.replace(tzinfo=timezone.utc)
        return cls(
            account_id=account_id,
            start_at=start_at,
            end_at=end_at,
            lesson_type=lesson_type or DEFAULT_LESSON_TYPE,
            location=location or DEFAULT_LOCATION,
            notes=notes,
            user_calendar_id=user_calendar_id or "primary",
            buffer_minutes=buffer_minutes,
        )

    @property
    def duration_minutes(self) -> int:
        return int((self.end_at - self.start_at).total_seconds() // 60)


@dataclass
class BookingResult:
    booking: Booking
    remaining_hours: float
    status: str = BookingStatus.CONFIRMED.value

    @property
    def events(self) -> List[CalendarEventRef]:
        return list(self.booking.external_event_refs)


@dataclass
class CancellationResult:
    booking: Booking
    hours_refunded: float
    remaining_hours: float
    events_cancelled: List[str] = field(default_factory=list)
    events_failed: List[str] = field(default_factory=list)


def _outcome_for(exc: BookingFailedException) -> str:
    return exc.reason.value


class BookingOrchestrator(BaseService):
    def __init__(
        self,
        *,
        store: SqlAlchemyBookingStore,
        calendar: CalendarService,
        conflict_detector: ConflictDetector,
        quota_ledger: QuotaLedger,
        notifications: BookingNotificationService,
        time_zone: str = "UTC",
        cancellation_reason_min_length: int = 10,
    ):
        super().__init__()
        self.store = store
        self.calendar = calendar
        self.conflicts = conflict_detector
        self.ledger = quota_ledger
        self.notifications = notifications
        self.time_zone = time_zone
        self.cancellation_reason_min_length = cancellation_reason_min_length

    # Booking saga

    @BaseService.measure_operation("create_booking")
    async def create_booking(self, command: BookingCommand) -> BookingResult:
        """
        Run the booking saga.

        Returns:
            BookingResult for a confirmed booking

        Raises:
            ValidationException: the request itself is malformed
            SlotUnavailableException: the admin calendar is busy around the slot
            InsufficientQuotaException: not enough lesson hours, at precheck or at consumption
            UpstreamUnavailableException: the calendar service failed or its circuit is open
            BookingInternalException: persistence or unexpected failure, with a reference id
        """
        self._validate(command)
        hours = self.ledger.hours_for_duration(command.duration_minutes)
        booking_id = str(ulid.ULID())
        stack = CompensationStack(saga_id=booking_id)
        log_extra: Dict[str, Any] = {"booking_id": booking_id, "account_id": command.account_id}

        try:
            result = await self._run_saga(command, booking_id, hours, stack)
        except BookingFailedException as exc:
            await self._compensate(stack, f"Booking failed: {exc.message}", log_extra)
            prometheus_metrics.record_booking_outcome(_outcome_for(exc))
            raise
        except ValidationException as exc:
            await self._compensate(stack, f"Booking rejected: {exc.message}", log_extra)
            raise
        except InsufficientQuotaError as exc:
            await self._compensate(stack, f"Quota consumption failed: {exc}", log_extra)
            prometheus_metrics.record_booking_outcome("insufficient_quota")
            raise InsufficientQuotaException(exc.available_hours, hours) from exc
        except (ExternalAPIError, CircuitOpenError) as exc:
            await self._compensate(stack, f"Calendar service failed: {type(exc).__name__}", log_extra)
            prometheus_metrics.record_booking_outcome("upstream_unavailable")
            raise UpstreamUnavailableException(getattr(exc, "retry_after", None)) from exc
        except Exception as exc:
            reference_id = str(ulid.ULID())
            logger.exception(
                "booking_saga_internal_error",
                extra={**log_extra, "reference_id": reference_id},
            )
            await self._compensate(stack, f"Internal error, reference {reference_id}", log_extra)
            prometheus_metrics.record_booking_outcome("internal_error")
            raise BookingInternalException(reference_id) from exc

        prometheus_metrics.record_booking_outcome("confirmed")
        logger.info(
            "booking_confirmed",
            extra={**log_extra, "hours": hours, "remaining_hours": result.remaining_hours},
        )
        await self._notify_confirmed(result)
        return result

    async def _run_saga(
        self,
        command: BookingCommand,
        booking_id: str,
        hours: float,
        stack: CompensationStack,
    ) -> BookingResult:
        # 1. Conflict check against the admin calendar
        if await self.conflicts.is_busy(command.start_at, command.end_at, command.buffer_minutes):
            raise SlotUnavailableException(
                details={
                    "start_at": command.start_at.isoformat(),
                    "end_at": command.end_at.isoformat(),
                }
            )

        # 2. Quota precheck (read only)
        check = await asyncio.to_thread(self.ledger.check_available, command.account_id, hours)
        if not check.ok:
            raise InsufficientQuotaException(check.available_hours, hours)

        # 3. Calendar events, admin first
        event = self._event_data(command)
        admin_calendar_id = self.calendar.admin_calendar_id
        admin_event_id = await self.calendar.create_event(
            CalendarOwnerRole.ADMIN, admin_calendar_id, event
        )
        cancelled_event_ids: List[str] = []
        stack.push(
            "cancel_admin_event",
            self._cancel_event_action(
                CalendarOwnerRole.ADMIN, admin_calendar_id, admin_event_id, cancelled_event_ids
            ),
        )

        user_event_id = await self.calendar.create_event(
            CalendarOwnerRole.USER, command.user_calendar_id, event
        )
        stack.push(
            "cancel_user_event",
            self._cancel_event_action(
                CalendarOwnerRole.USER, command.user_calendar_id, user_event_id, cancelled_event_ids
            ),
        )

        # 4. Booking record, pending until the quota is taken
        booking = self._build_booking(
            booking_id,
            command,
            hours,
            [
                (CalendarOwnerRole.ADMIN, admin_calendar_id, admin_event_id),
                (CalendarOwnerRole.USER, command.user_calendar_id, user_event_id),
            ],
        )
        await asyncio.to_thread(self.store.insert_booking, booking)

        async def mark_booking_cancelled(report: CompensationReport) -> None:
            await self._mark_saga_booking_cancelled(booking_id, cancelled_event_ids, report)

        stack.push_final("mark_booking_cancelled", mark_booking_cancelled)

        # 5. Quota consumption, tagged with the booking id
        consumed = await asyncio.to_thread(
            self.ledger.consume, command.account_id, hours, booking_id
        )

        async def credit_back() -> None:
            await asyncio.to_thread(
                self.ledger.credit, command.account_id, hours, booking_id, ROLLBACK_CREDIT_REASON
            )

        stack.push("credit_quota", credit_back)

        confirmed = await asyncio.to_thread(
            self.store.update_booking_status, booking_id, BookingStatus.CONFIRMED
        )
        stack.clear()
        return BookingResult(booking=confirmed, remaining_hours=consumed.available_hours)

    def _cancel_event_action(
        self,
        role: CalendarOwnerRole,
        calendar_id: str,
        external_id: str,
        cancelled: List[str],
    ):
        async def undo() -> None:
            await self.calendar.cancel_event(role, calendar_id, external_id)
            cancelled.append(external_id)

        return undo

    async def _mark_saga_booking_cancelled(
        self,
        booking_id: str,
        cancelled_event_ids: List[str],
        report: CompensationReport,
    ) -> None:
        if cancelled_event_ids:
            await asyncio.to_thread(
                self.store.mark_event_refs_cancelled, booking_id, cancelled_event_ids
            )
        note = report.cause
        if report.failed:
            note = f"{note}\nCompensation failures: {report.describe_failures()}"
        await asyncio.to_thread(
            self.store.update_booking_status, booking_id, BookingStatus.CANCELLED, note
        )

    async def _compensate(self, stack: CompensationStack, cause: str, log_extra: Dict[str, Any]) -> None:
        if not len(stack):
            return
        logger.warning("booking_saga_compensating", extra={**log_extra, "actions": stack.names})
        report = await stack.unwind(cause)
        if not report.ok:
            # Left for manual reconciliation: these side effects may still exist.
            logger.error(
                "booking_saga_compensation_incomplete",
                extra={**log_extra, "failed_actions": report.failed},
            )

    async def _notify_confirmed(self, result: BookingResult) -> None:
        try:
            await self.notifications.send_booking_confirmation(result.booking, result.remaining_hours)
        except Exception as exc:
            logger.warning(
                "booking_confirmation_notification_failed",
                extra={"booking_id": result.booking.id, "error": str(exc)},
            )

    # Admin cancellation

    @BaseService.measure_operation("cancel_booking")
    async def cancel_booking(self, booking_id: str, reason: str, cancelled_by: str) -> CancellationResult:
        """
        Cancel a booking on behalf of an admin and give the hours back.

        Calendar cleanup, the refund and the notification are best-effort;
        the booking is marked cancelled whatever happens to them.
        """
        reason = (reason or "").strip()
        if len(reason) < self.cancellation_reason_min_length:
            raise ValidationException(
                f"Cancellation reason must be at least {self.cancellation_reason_min_length} characters",
                code="INVALID_CANCELLATION_REASON",
            )

        booking = await asyncio.to_thread(self.store.get_booking, booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        if booking.is_cancelled:
            raise ValidationException("Booking is already cancelled", code="BOOKING_ALREADY_CANCELLED")
        was_confirmed = booking.status == BookingStatus.CONFIRMED.value

        cancelled: List[str] = []
        failed: List[str] = []
        for ref in booking.active_event_refs():
            try:
                await self.calendar.cancel_event(
                    CalendarOwnerRole(ref.owner_role), ref.calendar_id, ref.external_id
                )
                cancelled.append(ref.external_id)
            except Exception as exc:
                failed.append(ref.external_id)
                logger.error(
                    "admin_cancel_event_failed",
                    extra={"booking_id": booking_id, "external_id": ref.external_id, "error": str(exc)},
                )
        if cancelled:
            await asyncio.to_thread(self.store.mark_event_refs_cancelled, booking_id, cancelled)

        booking = await asyncio.to_thread(
            self.store.update_booking_status,
            booking_id,
            BookingStatus.CANCELLED,
            f"CANCELLED BY ADMIN\nReason: {reason}",
        )

        hours_refunded = 0.0
        hours = float(booking.hours_consumed or 0)
        if was_confirmed and hours > 0:
            try:
                credit = await asyncio.to_thread(
                    self.ledger.credit, booking.account_id, hours, booking_id, ADMIN_CANCEL_CREDIT_REASON
                )
                hours_refunded = hours if credit.applied else 0.0
            except Exception as exc:
                logger.error(
                    "admin_cancel_refund_failed",
                    extra={"booking_id": booking_id, "hours": hours, "error": str(exc)},
                )

        balance = await asyncio.to_thread(self.ledger.get_balance, booking.account_id)
        logger.info(
            "booking_cancelled_by_admin",
            extra={
                "booking_id": booking_id,
                "cancelled_by": cancelled_by,
                "hours_refunded": hours_refunded,
                "events_failed": failed,
            },
        )

        try:
            await self.notifications.send_cancellation_notification(
                booking, reason, cancelled_by, hours_refunded
            )
        except Exception as exc:
            logger.warning(
                "booking_cancellation_notification_failed",
                extra={"booking_id": booking_id, "error": str(exc)},
            )

        return CancellationResult(
            booking=booking,
            hours_refunded=hours_refunded,
            remaining_hours=balance.available_hours,
            events_cancelled=cancelled,
            events_failed=failed,
        )

    # Helpers

    @staticmethod
    def _validate(command: BookingCommand) -> None:
        if not command.account_id:
            raise ValidationException("account_id is required", code="MISSING_ACCOUNT")
        if command.end_at <= command.start_at:
            raise ValidationException("end_at must be after start_at", code="INVALID_TIME_RANGE")
        if command.duration_minutes <= 0:
            raise ValidationException("Booking must last at least one minute", code="INVALID_DURATION")
        if command.buffer_minutes is not None and command.buffer_minutes < 0:
            raise ValidationException("buffer_minutes cannot be negative", code="INVALID_BUFFER")

    def _event_data(self, command: BookingCommand) -> CalendarEventData:
        return CalendarEventData(
            summary=f"Driving Lesson - {command.lesson_type}",
            description=f"Lesson Type: {command.lesson_type}\nNotes: {command.notes or ''}",
            start=command.start_at,
            end=command.end_at,
            location=command.location,
            time_zone=self.time_zone,
        )

    @staticmethod
    def _build_booking(
        booking_id: str,
        command: BookingCommand,
        hours: float,
        events: List[Tuple[CalendarOwnerRole, str, str]],
    ) -> Booking:
        booking = Booking(
            id=booking_id,
            account_id=command.account_id,
            start_at=command.start_at,
            end_at=command.end_at,
            duration_minutes=command.duration_minutes,
            lesson_type=command.lesson_type,
            location=command.location,
            notes=command.notes,
            hours_consumed=hours,
            status=BookingStatus.PENDING.value,
        )
        for role, calendar_id, external_id in events:
            booking.external_event_refs.append(
                CalendarEventRef(
                    owner_role=role.value,
                    calendar_id=calendar_id,
                    external_id=external_id,
                    start_at=command.start_at,
                    end_at=command.end_at,
                    status=CalendarEventStatus.ACTIVE.value,
                )
            )
        return booking
