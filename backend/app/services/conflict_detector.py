# backend/app/services/conflict_detector.py
"""
Slot availability against the admin calendar.

The requested interval is widened by the buffer on both sides and compared
with the admin calendar's free/busy data. A failed query is never read as
either "free" or "busy"; the classified error reaches the caller.
"""

from datetime import datetime, timedelta
import logging
from typing import List, Optional

from ..core.exceptions import ValidationException
from ..integrations.google_calendar_client import BusyInterval
from .base import BaseService
from .calendar_service import CalendarService

logger = logging.getLogger(__name__)


class ConflictDetector(BaseService):
    def __init__(self, calendar: CalendarService, default_buffer_minutes: int = 15):
        super().__init__()
        self.calendar = calendar
        self.default_buffer_minutes = default_buffer_minutes

    @staticmethod
    def expand(start_at: datetime, end_at: datetime, buffer_minutes: int):
        buffer = timedelta(minutes=buffer_minutes)
        return start_at - buffer, end_at + buffer

    async def find_conflicts(
        self,
        start_at: datetime,
        end_at: datetime,
        buffer_minutes: Optional[int] = None,
    ) -> List[BusyInterval]:
        """Busy intervals that overlap the buffered request window."""
        if end_at <= start_at:
            raise ValidationException("end_at must be after start_at", code="INVALID_TIME_RANGE")
        buffer = self.default_buffer_minutes if buffer_minutes is None else buffer_minutes
        if buffer < 0:
            raise ValidationException("buffer_minutes cannot be negative", code="INVALID_BUFFER")

        window_start, window_end = self.expand(start_at, end_at, buffer)
        busy = await self.calendar.get_admin_busy(window_start, window_end)
        return [interval for interval in busy if interval.overlaps(window_start, window_end)]

    @BaseService.measure_operation("is_busy")
    async def is_busy(
        self,
        start_at: datetime,
        end_at: datetime,
        buffer_minutes: Optional[int] = None,
    ) -> bool:
        conflicts = await self.find_conflicts(start_at, end_at, buffer_minutes)
        if conflicts:
            logger.info(
                "slot_conflict_detected",
                extra={
                    "start_at": start_at.isoformat(),
                    "end_at": end_at.isoformat(),
                    "conflicts": len(conflicts),
                },
            )
        return bool(conflicts)
