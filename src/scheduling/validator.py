"""
Scheduling validator: business days, business hours, allowed durations
and overlap with existing bookings.

All checks are done in the business timezone. Naive datetimes are taken
to already be business-local wall-clock times.

Usage:
    validator = SchedulingValidator(settings.business)
    check = validator.validate(start, 30, store.list())
    if not check.ok:
        print(check.violation, check.message)
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Iterable, Optional, Protocol
from zoneinfo import ZoneInfo

from src.config import BusinessConfig, settings
from src.schemas.booking_schema import BookingStatus, TimeSlot
from src.utils import describe_days, format_hour, utcnow

logger = logging.getLogger(__name__)


class Violation(str, Enum):
    PAST_TIME = "past_time"
    INVALID_DURATION = "invalid_duration"
    OUTSIDE_BUSINESS_DAYS = "outside_business_days"
    OUTSIDE_BUSINESS_HOURS = "outside_business_hours"
    CONFLICT = "conflict"


VIOLATION_FIELDS: dict[Violation, str] = {
    Violation.PAST_TIME: "start_time",
    Violation.INVALID_DURATION: "duration_minutes",
    Violation.OUTSIDE_BUSINESS_DAYS: "start_time",
    Violation.OUTSIDE_BUSINESS_HOURS: "start_time",
    Violation.CONFLICT: "start_time",
}


class Scheduled(Protocol):
    """Anything occupying the calendar: a booking or a booking-like record."""

    start_time: datetime
    duration_minutes: int
    status: Any


@dataclass(frozen=True)
class ScheduleCheck:
    """Result of validating one requested interval."""

    ok: bool
    message: str = "Time slot is available"
    violation: Optional[Violation] = None
    conflicts: tuple = ()

    @property
    def field(self) -> Optional[str]:
        return VIOLATION_FIELDS.get(self.violation) if self.violation else None


class SchedulingValidator:
    """Checks requested intervals against business rules and existing bookings."""

    def __init__(self, business: Optional[BusinessConfig] = None) -> None:
        self.business = business or settings.business
        self.tz = ZoneInfo(self.business.timezone)

    @property
    def hours_label(self) -> str:
        return f"{format_hour(self.business.open_hour)} to {format_hour(self.business.close_hour)}"

    @property
    def days_label(self) -> str:
        return describe_days(self.business.business_days)

    @property
    def durations_label(self) -> str:
        return ", ".join(str(d) for d in self.business.allowed_durations)

    def localize(self, value: datetime) -> datetime:
        """Express a datetime in the business timezone."""
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz)
        return value.astimezone(self.tz)

    def _closing_time(self, day: date) -> datetime:
        return datetime.combine(day, time(0), tzinfo=self.tz) + timedelta(hours=self.business.close_hour)

    def find_conflicts(
        self,
        start: datetime,
        duration_minutes: int,
        existing: Iterable[Scheduled],
    ) -> list[Scheduled]:
        """Non-cancelled entries whose interval overlaps ``[start, start+duration)``."""
        start = self.localize(start)
        end = start + timedelta(minutes=duration_minutes)
        conflicts = []
        for booking in existing:
            if booking.status == BookingStatus.CANCELLED:
                continue
            other_start = self.localize(booking.start_time)
            other_end = other_start + timedelta(minutes=booking.duration_minutes)
            if start < other_end and end > other_start:
                conflicts.append(booking)
        return conflicts

    def validate(
        self,
        start: datetime,
        duration_minutes: int,
        existing: Iterable[Scheduled] = (),
        now: Optional[datetime] = None,
    ) -> ScheduleCheck:
        """
        Validate a requested start time and duration.

        Checks run in order: future start, allowed duration, business day,
        business hours (start and end), then conflicts. The first failing
        check is reported.
        """
        now = now or utcnow()
        start = self.localize(start)
        biz = self.business

        if start <= now:
            return ScheduleCheck(
                ok=False,
                violation=Violation.PAST_TIME,
                message="Booking time must be in the future",
            )

        if duration_minutes not in biz.allowed_durations:
            return ScheduleCheck(
                ok=False,
                violation=Violation.INVALID_DURATION,
                message=f"Duration must be one of: {self.durations_label} minutes",
            )

        if start.weekday() not in biz.business_days:
            return ScheduleCheck(
                ok=False,
                violation=Violation.OUTSIDE_BUSINESS_DAYS,
                message=f"Bookings are only available {self.days_label}",
            )

        if not biz.open_hour <= start.hour < biz.close_hour:
            return ScheduleCheck(
                ok=False,
                violation=Violation.OUTSIDE_BUSINESS_HOURS,
                message=(
                    f"Bookings are only available between {self.hours_label} "
                    f"({biz.timezone} time)"
                ),
            )

        end = start + timedelta(minutes=duration_minutes)
        if end > self._closing_time(start.date()):
            return ScheduleCheck(
                ok=False,
                violation=Violation.OUTSIDE_BUSINESS_HOURS,
                message=(
                    f"Meeting would extend beyond business hours "
                    f"({format_hour(biz.close_hour)} {biz.timezone} time)"
                ),
            )

        conflicts = self.find_conflicts(start, duration_minutes, existing)
        if conflicts:
            logger.debug(
                "Requested slot %s (%d min) conflicts with %d booking(s)",
                start.isoformat(), duration_minutes, len(conflicts),
            )
            return ScheduleCheck(
                ok=False,
                violation=Violation.CONFLICT,
                message="Time slot conflicts with existing booking",
                conflicts=tuple(conflicts),
            )

        return ScheduleCheck(ok=True)

    def enumerate_slots(
        self,
        day: date,
        duration_minutes: int = 30,
        existing: Iterable[Scheduled] = (),
        now: Optional[datetime] = None,
    ) -> list[TimeSlot]:
        """
        Bookable slots on one day, in order.

        Candidates start at opening time and step by the slot interval; a
        slot is kept when it ends by closing time, starts in the future and
        overlaps no existing booking. Closed days yield an empty list.
        """
        now = now or utcnow()
        if isinstance(day, datetime):
            day = self.localize(day).date()
        if day.weekday() not in self.business.business_days:
            return []

        existing = list(existing)
        closing = self._closing_time(day)
        step = timedelta(minutes=self.business.slot_interval_minutes)
        length = timedelta(minutes=duration_minutes)

        slots: list[TimeSlot] = []
        cursor = datetime.combine(day, time(0), tzinfo=self.tz) + timedelta(hours=self.business.open_hour)
        while cursor + length <= closing:
            if cursor > now and not self.find_conflicts(cursor, duration_minutes, existing):
                slots.append(TimeSlot(
                    start_time=cursor,
                    end_time=cursor + length,
                    duration_minutes=duration_minutes,
                    display_time=cursor.strftime("%H:%M"),
                ))
            cursor += step
        return slots
