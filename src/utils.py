"""Shared utilities used across the booking intake layer."""

import re
from datetime import datetime, timezone
from typing import Optional

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def normalize_email(value: str) -> str:
    """Normalize an email address by trimming and lower-casing it.

    Examples:
        >>> normalize_email("  Jane@Example.COM ")
        'jane@example.com'
    """
    return value.strip().lower()


def find_email(text: str) -> Optional[str]:
    """Return the first email address found in free text, if any.

    Examples:
        >>> find_email("sure, it's jane@x.com thanks")
        'jane@x.com'
    """
    match = EMAIL_PATTERN.search(text)
    return match.group(0) if match else None


def is_valid_email(value: str) -> bool:
    """Check that the whole value is a single email address."""
    return EMAIL_PATTERN.fullmatch(value.strip()) is not None


def format_hour(hour: int) -> str:
    """Render a 24h hour as a spoken 12h label.

    Examples:
        >>> format_hour(9), format_hour(12), format_hour(18)
        ('9 AM', '12 PM', '6 PM')
    """
    suffix = "AM" if hour < 12 or hour == 24 else "PM"
    display = hour % 12 or 12
    return f"{display} {suffix}"


def describe_days(days: tuple[int, ...]) -> str:
    """Describe a set of weekdays (Monday=0), collapsing contiguous runs.

    Examples:
        >>> describe_days((0, 1, 2, 3, 4))
        'Monday to Friday'
    """
    names = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
    ordered = sorted(set(days))
    if not ordered:
        return ""
    if len(ordered) > 2 and ordered == list(range(ordered[0], ordered[-1] + 1)):
        return f"{names[ordered[0]]} to {names[ordered[-1]]}"
    labels = [names[d] for d in ordered]
    if len(labels) == 1:
        return labels[0]
    return ", ".join(labels[:-1]) + f" and {labels[-1]}"


BOOKING_KEYWORDS = (
    "book", "schedule", "appointment", "meeting", "consultation", "call",
    "discuss", "talk", "contact", "hire", "quote", "project",
    "work together", "get started", "interested in",
)


def mentions_booking(text: str) -> bool:
    """Check whether free text contains a booking-intent keyword.

    Examples:
        >>> mentions_booking("I'd like to book a meeting")
        True
        >>> mentions_booking("Callum Reid")
        False
    """
    lowered = text.lower()
    return any(
        re.search(rf"\b{re.escape(keyword)}(?:s|d|ed|ing)?\b", lowered)
        for keyword in BOOKING_KEYWORDS
    )
