"""Tests for business-hours, duration and conflict validation."""

from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest

from src.scheduling.validator import Violation
from src.schemas.booking_schema import BookingStatus
from tests.conftest import FIXED_NOW, london


def existing(start: datetime, minutes: int = 30, status: BookingStatus = BookingStatus.CONFIRMED):
    return SimpleNamespace(start_time=start, duration_minutes=minutes, status=status)


MONDAY = date(2026, 10, 19)


class TestValidate:
    def test_valid_slot(self, validator):
        check = validator.validate(london(2026, 10, 19, 10), 30, now=FIXED_NOW)
        assert check.ok
        assert check.violation is None
        assert check.field is None

    def test_past_time(self, validator):
        check = validator.validate(london(2026, 10, 14, 10), 30, now=FIXED_NOW)
        assert check.violation == Violation.PAST_TIME
        assert check.field == "start_time"
        assert check.message == "Booking time must be in the future"

    def test_exactly_now_is_past(self, validator):
        check = validator.validate(FIXED_NOW, 30, now=FIXED_NOW)
        assert check.violation == Violation.PAST_TIME

    def test_invalid_duration(self, validator):
        check = validator.validate(london(2026, 10, 19, 10), 20, now=FIXED_NOW)
        assert check.violation == Violation.INVALID_DURATION
        assert check.field == "duration_minutes"
        assert check.message == "Duration must be one of: 15, 30, 45, 60 minutes"

    def test_past_reported_before_duration(self, validator):
        check = validator.validate(london(2026, 10, 13, 10), 20, now=FIXED_NOW)
        assert check.violation == Violation.PAST_TIME

    def test_weekend(self, validator):
        check = validator.validate(london(2026, 10, 17, 10), 30, now=FIXED_NOW)
        assert check.violation == Violation.OUTSIDE_BUSINESS_DAYS
        assert check.message == "Bookings are only available Monday to Friday"

    def test_before_opening(self, validator):
        check = validator.validate(london(2026, 10, 19, 8, 30), 30, now=FIXED_NOW)
        assert check.violation == Violation.OUTSIDE_BUSINESS_HOURS
        assert "9 AM to 6 PM" in check.message

    def test_at_closing(self, validator):
        check = validator.validate(london(2026, 10, 19, 18), 15, now=FIXED_NOW)
        assert check.violation == Violation.OUTSIDE_BUSINESS_HOURS

    def test_runs_past_closing(self, validator):
        check = validator.validate(london(2026, 10, 19, 17, 30), 60, now=FIXED_NOW)
        assert check.violation == Violation.OUTSIDE_BUSINESS_HOURS
        assert "extend beyond business hours" in check.message

    def test_ends_exactly_at_closing(self, validator):
        assert validator.validate(london(2026, 10, 19, 17, 30), 30, now=FIXED_NOW).ok

    def test_naive_time_is_business_local(self, validator):
        assert validator.validate(datetime(2026, 10, 19, 10), 30, now=FIXED_NOW).ok

    def test_utc_input_converted_to_business_time(self, validator):
        # 07:30 UTC is 08:30 in London during BST
        utc_start = datetime(2026, 10, 19, 7, 30, tzinfo=timezone.utc)
        check = validator.validate(utc_start, 30, now=FIXED_NOW)
        assert check.violation == Violation.OUTSIDE_BUSINESS_HOURS


class TestConflicts:
    def test_overlap_rejected(self, validator):
        taken = [existing(london(2026, 10, 19, 10), 30)]
        check = validator.validate(london(2026, 10, 19, 10, 15), 15, taken, now=FIXED_NOW)
        assert check.violation == Violation.CONFLICT
        assert check.conflicts == tuple(taken)
        assert check.message == "Time slot conflicts with existing booking"

    def test_enclosing_interval_rejected(self, validator):
        taken = [existing(london(2026, 10, 19, 10, 15), 15)]
        check = validator.validate(london(2026, 10, 19, 10), 60, taken, now=FIXED_NOW)
        assert check.violation == Violation.CONFLICT

    def test_back_to_back_allowed(self, validator):
        taken = [existing(london(2026, 10, 19, 10), 30)]
        assert validator.validate(london(2026, 10, 19, 10, 30), 30, taken, now=FIXED_NOW).ok
        assert validator.validate(london(2026, 10, 19, 9, 30), 30, taken, now=FIXED_NOW).ok

    def test_cancelled_bookings_ignored(self, validator):
        taken = [existing(london(2026, 10, 19, 10), 30, BookingStatus.CANCELLED)]
        assert validator.validate(london(2026, 10, 19, 10), 30, taken, now=FIXED_NOW).ok

    def test_pending_bookings_block(self, validator):
        taken = [existing(london(2026, 10, 19, 10), 30, BookingStatus.PENDING)]
        check = validator.validate(london(2026, 10, 19, 10), 30, taken, now=FIXED_NOW)
        assert check.violation == Violation.CONFLICT

    def test_find_conflicts_across_timezones(self, validator):
        taken = [existing(datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc), 30)]
        assert validator.find_conflicts(london(2026, 10, 19, 10), 30, taken) == taken


class TestEnumerateSlots:
    def test_full_day_of_half_hours(self, validator):
        slots = validator.enumerate_slots(MONDAY, 30, now=FIXED_NOW)
        assert len(slots) == 18
        assert slots[0].display_time == "09:00"
        assert slots[-1].display_time == "17:30"

    def test_hour_slots_end_by_closing(self, validator):
        slots = validator.enumerate_slots(MONDAY, 60, now=FIXED_NOW)
        assert len(slots) == 17
        assert slots[-1].end_time == london(2026, 10, 19, 18)

    def test_booked_slots_removed(self, validator):
        taken = [existing(london(2026, 10, 19, 10), 30)]
        times = [s.display_time for s in validator.enumerate_slots(MONDAY, 60, taken, now=FIXED_NOW)]
        assert "09:30" not in times
        assert "10:00" not in times
        assert "09:00" in times
        assert "10:30" in times

    def test_closed_day_is_empty(self, validator):
        assert validator.enumerate_slots(date(2026, 10, 17), 30, now=FIXED_NOW) == []

    def test_today_only_future_slots(self, validator):
        slots = validator.enumerate_slots(date(2026, 10, 14), 30, now=FIXED_NOW)
        assert slots[0].display_time == "13:30"
        assert len(slots) == 9

    def test_slots_are_in_business_timezone(self, validator):
        slot = validator.enumerate_slots(MONDAY, 30, now=FIXED_NOW)[0]
        assert slot.start_time == london(2026, 10, 19, 9)
        assert slot.duration_minutes == 30


class TestLabels:
    def test_hours_label(self, validator):
        assert validator.hours_label == "9 AM to 6 PM"

    def test_days_label(self, validator):
        assert validator.days_label == "Monday to Friday"

    @pytest.mark.parametrize("minutes", [15, 30, 45, 60])
    def test_each_allowed_duration_accepted(self, validator, minutes):
        assert validator.validate(london(2026, 10, 19, 11), minutes, now=FIXED_NOW).ok
