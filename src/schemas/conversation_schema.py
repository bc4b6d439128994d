"""Conversation turn and confirmation result schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from src.schemas.booking_schema import Booking, IntegrationResults


class BookingStep(str, Enum):
    NAME = "name"
    EMAIL = "email"
    ORGANIZATION = "organization"
    INQUIRY = "inquiry"
    START_TIME = "start_time"
    DURATION = "duration"
    CONFIRMATION = "confirmation"


class Channel(str, Enum):
    CHAT = "chat"
    VOICE = "voice"


class TurnResult(BaseModel):
    """What the caller should hear after one slot-filling turn."""

    session_id: str
    step: BookingStep
    prompt: str
    is_complete: bool = False
    data: dict[str, Any] = Field(default_factory=dict)
    needs_confirmation: bool = False
    error_field: Optional[str] = None
    degraded: bool = False


class ConfirmationResult(BaseModel):
    """Outcome of committing a booking; ``session_id`` is unset for direct bookings."""

    session_id: Optional[str] = None
    success: bool
    message: str
    booking: Optional[Booking] = None
    integrations: Optional[IntegrationResults] = None
    error_field: Optional[str] = None
    error: Optional[dict[str, Any]] = None


class IntentResult(BaseModel):
    """Reply for an utterance that did not start a booking conversation."""

    session_id: str
    is_booking_intent: bool = False
    response: str
    degraded: bool = False


class ConversationSummary(BaseModel):
    """Monitoring view of one in-progress booking conversation."""

    session_id: str
    channel: Channel
    step: BookingStep
    created_at: datetime
    updated_at: datetime
    fields_collected: int
    is_complete: bool = False
