"""Dynamic prompt construction for slot-filling turns and booking read-backs."""

from datetime import datetime
from typing import Any, Mapping, Optional
from zoneinfo import ZoneInfo

from src.config import BusinessConfig
from src.schemas.booking_schema import Booking, IntegrationResults
from src.utils import describe_days, format_hour


def _availability(business: BusinessConfig) -> str:
    return (
        f"{describe_days(business.business_days)}, "
        f"{format_hour(business.open_hour)} to {format_hour(business.close_hour)}"
    )


def _durations(business: BusinessConfig) -> str:
    values = [str(d) for d in business.allowed_durations]
    if len(values) == 1:
        return values[0]
    return ", ".join(values[:-1]) + f" or {values[-1]}"


def format_when(value: datetime, timezone: str) -> tuple[str, str]:
    """Date and time labels for a start time, in the business timezone."""
    local = value.astimezone(ZoneInfo(timezone)) if value.tzinfo else value
    return local.strftime("%A, %d %B %Y"), local.strftime("%H:%M")


def build_step_prompt(field: str, data: Mapping[str, Any], business: BusinessConfig) -> str:
    """Question asking for the next missing field."""
    name = data.get("name")
    prompts = {
        "name": (
            "I'd be happy to help you schedule a consultation! To get started, "
            "could you please tell me your full name?"
        ),
        "email": (
            f"Thank you, {name}! What's the best email address to reach you at?"
            if name else "What's the best email address to reach you at?"
        ),
        "organization": "Great! What's the name of your company or organization?",
        "inquiry": (
            "Perfect! Could you tell me a bit about your project or what service you're "
            "interested in? This will help us prepare for our conversation."
        ),
        "start_time": (
            "Excellent! When would you prefer to have this consultation? Please let me know "
            f"your preferred date and time. We're available {_availability(business)}."
        ),
        "duration_minutes": (
            "How long would you like the meeting to be? We offer "
            f"{_durations(business)}-minute consultations."
        ),
    }
    return prompts.get(field, "Let me help you complete your booking.")


def build_guided_prompt(
    field: str,
    business: BusinessConfig,
    value: Optional[str] = None,
    error: Optional[str] = None,
) -> str:
    """Re-prompt for a field whose answer was missing, unparseable or rejected."""
    if field == "name":
        return (
            "I need your full name to proceed with the booking. "
            "Could you please provide your first and last name?"
        )
    if field == "email":
        if value:
            return (
                f'The email "{value}" doesn\'t look valid. '
                "Could you please provide a valid email address?"
            )
        return (
            "I need your email address to send you the booking confirmation "
            "and calendar invitation."
        )
    if field == "organization":
        return (
            "What's the name of your company or organization? If you're an individual, "
            "you can just say 'Individual' or 'Personal'."
        )
    if field == "inquiry":
        return (
            "Could you tell me more about your project or what service you're interested in? "
            "For example: website development, mobile app, SEO services."
        )
    if field == "start_time":
        if error:
            return f"{error}. Please choose a different date and time, {_availability(business)}."
        return (
            "I didn't catch a date and time there. When would you like to schedule your "
            "consultation? For example: 'next Monday at 10am' or '2026-10-20 14:00'."
        )
    if field == "duration_minutes":
        if error:
            return f"{error}. Please choose from: {_durations(business)} minutes."
        return (
            "How long would you like the consultation to be? "
            f"We offer {_durations(business)}-minute sessions."
        )
    return "I need some additional information to complete your booking."


def build_confirmation_prompt(data: Mapping[str, Any], business: BusinessConfig) -> str:
    """Read-back of every collected field before the booking is committed."""
    date_label, time_label = format_when(data["start_time"], business.timezone)
    lines = [
        "Perfect! Let me confirm your booking details:",
        f"  Name: {data['name']}",
        f"  Email: {data['email']}",
        f"  Company: {data['organization']}",
        f"  Project/Inquiry: {data['inquiry']}",
        f"  Date: {date_label}",
        f"  Time: {time_label}",
        f"  Duration: {data['duration_minutes']} minutes",
        "",
        "Does this look correct? If yes, I'll confirm your booking and send you a calendar "
        "invitation. If you need to change anything, just let me know!",
    ]
    return "\n".join(lines)


def build_booking_confirmed_message(
    booking: Booking,
    business: BusinessConfig,
    integrations: Optional[IntegrationResults] = None,
) -> str:
    """Message returned to the caller once a booking is committed."""
    date_label, time_label = format_when(booking.start_time, business.timezone)
    lines = [
        "Booking Confirmed!",
        "",
        "Your consultation has been successfully scheduled.",
        f"  Booking ID: {booking.id}",
        f"  Date & Time: {date_label} at {time_label}",
        f"  Duration: {booking.duration_minutes} minutes",
    ]
    if booking.meeting_link:
        lines.append(f"  Meeting link: {booking.meeting_link}")
    lines.append("")
    if integrations and integrations.calendar and integrations.calendar.success:
        lines.append(f"You'll receive a calendar invitation shortly at {booking.email}.")
    else:
        lines.append(
            f"We'll send the calendar invitation to {booking.email} as soon as our "
            "calendar system is available."
        )
    lines.append(
        f"If you need to make any changes, please contact us at {business.contact_email}."
    )
    return "\n".join(lines)


def build_booking_failed_message(error: str) -> str:
    return (
        f"I'm sorry, there was an issue with your booking: {error}. "
        "Please try again or contact us directly."
    )


def build_non_booking_response(business: BusinessConfig) -> str:
    """Reply for a first message that does not ask to book anything."""
    return (
        f"I'm here to help you with {business.name} services. If you'd like to discuss a "
        "project, just say you'd like to book a consultation and I'll take a few details."
    )


def build_degraded_response(business: BusinessConfig) -> str:
    """Reply when intent classification is unavailable."""
    return (
        "I'm having trouble processing your request right now, but I can still book a "
        f"consultation for you. You can also contact us at {business.contact_email}."
    )
