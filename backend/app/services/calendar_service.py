# backend/app/services/calendar_service.py
"""
Calendar Service for the booking platform

Binds the admin and student calendar clients to the resilience registry so
that every external calendar call is rate limited, circuit broken and
retried under its dependency key.
"""

from datetime import datetime
import logging
from typing import List, Optional

from ..integrations.google_calendar_client import BusyInterval, CalendarClient, CalendarEventData
from ..models.booking import CalendarOwnerRole
from ..resilience.registry import ResilienceRegistry
from .base import BaseService

logger = logging.getLogger(__name__)

ADMIN_CALENDAR_KEY = "google_calendar"
USER_CALENDAR_KEY = "google_calendar_user"


class CalendarService(BaseService):
    def __init__(
        self,
        *,
        admin_client: CalendarClient,
        resilience: ResilienceRegistry,
        admin_calendar_id: str = "primary",
        user_client: Optional[CalendarClient] = None,
    ):
        super().__init__()
        self.admin_client = admin_client
        self.user_client = user_client or admin_client
        self.resilience = resilience
        self.admin_calendar_id = admin_calendar_id

    def _client_for(self, role: CalendarOwnerRole) -> CalendarClient:
        return self.admin_client if role == CalendarOwnerRole.ADMIN else self.user_client

    @staticmethod
    def _key_for(role: CalendarOwnerRole) -> str:
        return ADMIN_CALENDAR_KEY if role == CalendarOwnerRole.ADMIN else USER_CALENDAR_KEY

    @BaseService.measure_operation("get_admin_busy")
    async def get_admin_busy(self, start: datetime, end: datetime) -> List[BusyInterval]:
        return await self.resilience.call(
            ADMIN_CALENDAR_KEY,
            lambda: self.admin_client.get_free_busy(self.admin_calendar_id, start, end),
            context={"operation": "get_free_busy", "calendar_id": self.admin_calendar_id},
        )

    @BaseService.measure_operation("create_event")
    async def create_event(
        self,
        role: CalendarOwnerRole,
        calendar_id: str,
        event: CalendarEventData,
    ) -> str:
        client = self._client_for(role)
        external_id = await self.resilience.call(
            self._key_for(role),
            lambda: client.create_event(calendar_id, event),
            context={"operation": "create_event", "calendar_id": calendar_id, "role": role.value},
        )
        logger.info(
            "calendar_event_created",
            extra={"role": role.value, "calendar_id": calendar_id, "external_id": external_id},
        )
        return external_id

    @BaseService.measure_operation("cancel_event")
    async def cancel_event(self, role: CalendarOwnerRole, calendar_id: str, external_id: str) -> bool:
        client = self._client_for(role)
        return await self.resilience.call(
            self._key_for(role),
            lambda: client.cancel_event(calendar_id, external_id),
            context={"operation": "cancel_event", "calendar_id": calendar_id, "role": role.value},
        )
