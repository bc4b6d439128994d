"""Booking, availability and integration result models."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class BookingSource(str, Enum):
    CHAT = "chat"
    VOICE = "voice"
    DIRECT = "direct"


class BookingFields(BaseModel):
    """Field values collected for a booking, before validation."""
    name: Optional[str] = None
    email: Optional[str] = None
    organization: Optional[str] = None
    inquiry: Optional[str] = None
    start_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None


class Booking(BaseModel):
    """A validated, scheduled appointment record."""
    id: str
    name: str
    email: str
    organization: str
    inquiry: str
    start_time: datetime
    duration_minutes: int
    status: BookingStatus = BookingStatus.PENDING
    source: BookingSource = BookingSource.CHAT
    calendar_event_id: Optional[str] = None
    meeting_link: Optional[str] = None
    crm_contact_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)


class TimeSlot(BaseModel):
    """Single bookable interval."""
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    display_time: str = ""


class CalendarEventResult(BaseModel):
    """Outcome of creating a calendar event for a booking."""
    success: bool
    event_id: Optional[str] = None
    meeting_link: Optional[str] = None
    error: Optional[str] = None
    fallback_used: bool = False


class CrmContactResult(BaseModel):
    """Outcome of upserting the booking's contact into the CRM."""
    success: bool
    contact_id: Optional[str] = None
    created: bool = False
    skipped: bool = False
    error: Optional[str] = None
    fallback_used: bool = False


class IntegrationResults(BaseModel):
    """Side-effect outcomes recorded after a booking commit."""
    calendar: Optional[CalendarEventResult] = None
    crm: Optional[CrmContactResult] = None

    @property
    def any_succeeded(self) -> bool:
        return bool(
            (self.calendar and self.calendar.success) or (self.crm and self.crm.success)
        )

    def summary(self) -> dict[str, Any]:
        return {
            "calendar": self.calendar.model_dump() if self.calendar else None,
            "crm": self.crm.model_dump() if self.crm else None,
        }
