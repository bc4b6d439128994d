"""
Calendar collaborators: create one event per committed booking.

``InMemoryCalendarClient`` is used offline and in tests; it can be told
to fail to simulate an outage. ``WebhookCalendarClient`` posts the event
to a configured endpoint.
"""

import logging
import uuid
from datetime import timedelta
from typing import Any, Optional, Protocol

from src.schemas.booking_schema import Booking, CalendarEventResult
from src.tools.webhook import WebhookClient, is_soft_rejection

logger = logging.getLogger(__name__)


class CalendarClient(Protocol):
    async def create_event(self, booking: Booking) -> CalendarEventResult:
        ...

    async def health_check(self) -> dict[str, Any]:
        ...


def event_payload(booking: Booking) -> dict[str, Any]:
    """Calendar event body for a booking."""
    end = booking.start_time + timedelta(minutes=booking.duration_minutes)
    return {
        "booking_id": booking.id,
        "summary": f"Consultation with {booking.name} ({booking.organization})",
        "description": booking.inquiry,
        "start": booking.start_time.isoformat(),
        "end": end.isoformat(),
        "duration_minutes": booking.duration_minutes,
        "attendees": [{"email": booking.email, "name": booking.name}],
    }


class InMemoryCalendarClient:
    """Keeps events in a dict; set ``outage`` to make every call raise it."""

    def __init__(self, meeting_base_url: str = "https://meet.example.com") -> None:
        self.meeting_base_url = meeting_base_url.rstrip("/")
        self.events: dict[str, dict[str, Any]] = {}
        self.outage: Optional[Exception] = None
        self.calls = 0

    async def create_event(self, booking: Booking) -> CalendarEventResult:
        self.calls += 1
        if self.outage is not None:
            raise self.outage
        event_id = f"evt_{uuid.uuid4().hex[:12]}"
        link = f"{self.meeting_base_url}/{event_id}"
        self.events[event_id] = {**event_payload(booking), "meeting_link": link}
        logger.info("Calendar event %s created for booking %s", event_id, booking.id)
        return CalendarEventResult(success=True, event_id=event_id, meeting_link=link)

    async def health_check(self) -> dict[str, Any]:
        return {"healthy": self.outage is None, "events": len(self.events)}


class WebhookCalendarClient(WebhookClient):
    """Creates events by POSTing them to a calendar webhook."""

    async def create_event(self, booking: Booking) -> CalendarEventResult:
        response = await self._post(event_payload(booking))
        if is_soft_rejection(response):
            logger.warning(
                "Calendar rejected event for booking %s: %d", booking.id, response.status_code
            )
            return CalendarEventResult(
                success=False,
                error=f"Calendar rejected event ({response.status_code})",
            )

        data = self._json(response)
        return CalendarEventResult(
            success=True,
            event_id=data.get("event_id") or data.get("id"),
            meeting_link=data.get("meeting_link") or data.get("hangoutLink"),
        )
