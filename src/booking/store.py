"""
In-memory booking store.

Owns every committed appointment. Creation re-validates the full record
(required fields, email, schedule against non-cancelled bookings) so
nothing reaches the store that the scheduling rules would reject.
Bookings are never deleted; cancellation is a status change.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Union

from src.resilience.errors import DependencyError, ErrorKind
from src.scheduling.validator import SchedulingValidator
from src.schemas.booking_schema import Booking, BookingFields, BookingSource, BookingStatus
from src.utils import is_valid_email, normalize_email, utcnow

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "email", "organization", "inquiry", "start_time", "duration_minutes")


class BookingValidationError(DependencyError):
    """A booking was rejected; ``field`` names the offending input."""

    def __init__(self, message: str, field: Optional[str] = None, violation: Optional[str] = None) -> None:
        super().__init__(
            message,
            ErrorKind.VALIDATION,
            field=field,
            context={"violation": violation} if violation else None,
        )
        self.violation = violation


class BookingNotFoundError(DependencyError):
    """No booking exists with the requested id."""

    def __init__(self, booking_id: str) -> None:
        super().__init__(
            f"Booking '{booking_id}' not found",
            ErrorKind.NOT_FOUND,
            context={"booking_id": booking_id},
        )
        self.booking_id = booking_id


class BookingStore:
    """Keeps bookings keyed by id; the single owner of committed records."""

    def __init__(
        self,
        validator: SchedulingValidator,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.validator = validator
        self._clock = clock
        self._bookings: dict[str, Booking] = {}

    def __len__(self) -> int:
        return len(self._bookings)

    def create(
        self,
        fields: Union[BookingFields, Mapping[str, Any]],
        source: Union[BookingSource, str] = BookingSource.CHAT,
    ) -> Booking:
        """
        Validate and store a new pending booking.

        Raises:
            BookingValidationError: A required field is missing, the email
                is malformed, or the schedule check fails.
        """
        data = fields.model_dump() if isinstance(fields, BookingFields) else dict(fields)

        for name in REQUIRED_FIELDS:
            value = data.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise BookingValidationError(f"{name} is required", field=name)

        email = normalize_email(str(data["email"]))
        if not is_valid_email(email):
            raise BookingValidationError("Invalid email format", field="email")

        try:
            duration = int(data["duration_minutes"])
        except (TypeError, ValueError):
            raise BookingValidationError(
                f"Duration must be one of: {self.validator.durations_label} minutes",
                field="duration_minutes",
            ) from None

        start = data["start_time"]
        if not isinstance(start, datetime):
            raise BookingValidationError("Invalid date/time format", field="start_time")
        start = self.validator.localize(start)

        now = self._clock()
        check = self.validator.validate(start, duration, self.list(), now=now)
        if not check.ok:
            logger.info("Booking rejected (%s): %s", check.violation.value, check.message)
            raise BookingValidationError(check.message, field=check.field, violation=check.violation.value)

        booking = Booking(
            id=uuid.uuid4().hex,
            name=str(data["name"]).strip(),
            email=email,
            organization=str(data["organization"]).strip(),
            inquiry=str(data["inquiry"]).strip(),
            start_time=start,
            duration_minutes=duration,
            status=BookingStatus.PENDING,
            source=BookingSource(source),
            created_at=now,
            updated_at=now,
        )
        self._bookings[booking.id] = booking
        logger.info(
            "Booking %s created for %s at %s (%d min)",
            booking.id, booking.email, booking.start_time.isoformat(), booking.duration_minutes,
        )
        return booking

    def get(self, booking_id: str) -> Optional[Booking]:
        return self._bookings.get(booking_id)

    def require(self, booking_id: str) -> Booking:
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        return booking

    def set_status(self, booking_id: str, status: Union[BookingStatus, str]) -> Booking:
        """
        Move a booking to a new status.

        Reviving a cancelled booking re-checks its slot against every other
        non-cancelled booking, since the slot may have been rebooked.

        Raises:
            BookingValidationError: Unknown status value, or the revived
                booking would overlap another one.
            BookingNotFoundError: Unknown booking id.
        """
        try:
            new_status = BookingStatus(status)
        except ValueError:
            valid = ", ".join(s.value for s in BookingStatus)
            raise BookingValidationError(
                f"Invalid status {status!r}; expected one of: {valid}", field="status"
            ) from None

        booking = self.require(booking_id)
        if booking.status == BookingStatus.CANCELLED and new_status != BookingStatus.CANCELLED:
            others = [b for b in self._bookings.values() if b.id != booking_id]
            conflicts = self.validator.find_conflicts(
                booking.start_time, booking.duration_minutes, others
            )
            if conflicts:
                logger.info(
                    "Booking %s cannot leave cancelled: slot taken by %s", booking_id, conflicts[0].id
                )
                raise BookingValidationError(
                    "This time slot is no longer available", field="start_time", violation="conflict"
                )

        booking.status = new_status
        booking.updated_at = self._clock()
        logger.info("Booking %s status -> %s", booking_id, new_status.value)
        return booking

    def attach_integrations(
        self,
        booking_id: str,
        *,
        calendar_event_id: Optional[str] = None,
        meeting_link: Optional[str] = None,
        crm_contact_id: Optional[str] = None,
    ) -> Booking:
        """Record external references produced by calendar/CRM side effects."""
        booking = self.require(booking_id)
        if calendar_event_id:
            booking.calendar_event_id = calendar_event_id
        if meeting_link:
            booking.meeting_link = meeting_link
        if crm_contact_id:
            booking.crm_contact_id = crm_contact_id
        booking.updated_at = self._clock()
        return booking

    def list(self, status: Optional[Union[BookingStatus, str]] = None) -> list[Booking]:
        """All bookings in creation order, optionally filtered by status."""
        bookings = list(self._bookings.values())
        if status is None:
            return bookings
        wanted = BookingStatus(status)
        return [b for b in bookings if b.status == wanted]
