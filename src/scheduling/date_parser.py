"""
Natural-language date, time and duration parsing.

The engine only depends on the ``DateTimeParser`` protocol; the keyword
parser here is the default. It understands relative days ("tomorrow",
"next monday"), explicit dates ("2026-10-20", "20/10/2026", "October 20")
and clock times ("10am", "2:30 pm", "14:00", "noon"). Results are
timezone-aware in the business timezone.

Examples:
    >>> parser = KeywordDateTimeParser(settings.business)
    >>> parser.parse_duration("half an hour")
    30
"""

import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional, Protocol
from zoneinfo import ZoneInfo

from src.config import WEEKDAY_NAMES, BusinessConfig, settings
from src.utils import utcnow

logger = logging.getLogger(__name__)

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_MONTH_RE = (
    r"(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|"
    r"aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)

ISO_DATE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})(?:[ t](\d{1,2}):(\d{2}))?")
SLASH_DATE = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b")
MONTH_DAY = re.compile(r"\b" + _MONTH_RE + r"\s+(\d{1,2})(?:st|nd|rd|th)?\b(?:,?\s*(\d{4}))?")
DAY_MONTH = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)?\s+(?:of\s+)?" + _MONTH_RE + r"\b(?:,?\s*(\d{4}))?")
WEEKDAY = re.compile(r"\b(next\s+|this\s+)?(" + "|".join(WEEKDAY_NAMES) + r")\b")

TIME_MERIDIEM = re.compile(r"\b(\d{1,2})(?:[:.](\d{2}))?\s*(am|pm|a\.m\.|p\.m\.)")
TIME_24H = re.compile(r"\b([01]?\d|2[0-3])[:.h]([0-5]\d)\b")
TIME_AT = re.compile(r"\bat\s+(\d{1,2})\b(?!\s*(?:min|hour|/|-))")

DURATION_UNIT = re.compile(
    r"(\d+(?:\.\d+)?)\s*(hours?|hrs?|h|minutes?|mins?|m)\b"
)
BARE_NUMBER = re.compile(r"\b(\d{1,3})\b")

NUMBER_WORDS = {
    "fifteen": 15, "twenty": 20, "thirty": 30, "forty five": 45,
    "forty-five": 45, "fortyfive": 45, "sixty": 60, "ninety": 90,
}


class DateTimeParser(Protocol):
    """Pluggable parsing strategy used by the conversation engine."""

    def parse_datetime(self, text: str, now: Optional[datetime] = None) -> Optional[datetime]:
        ...

    def parse_duration(self, text: str) -> Optional[int]:
        ...


class KeywordDateTimeParser:
    """Keyword and pattern based parser resolving in the business timezone."""

    def __init__(
        self,
        business: Optional[BusinessConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.business = business or settings.business
        self.tz = ZoneInfo(self.business.timezone)
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Dates and times
    # ------------------------------------------------------------------ #

    def parse_datetime(self, text: str, now: Optional[datetime] = None) -> Optional[datetime]:
        """
        Resolve free text to an aware datetime, or ``None`` when nothing parses.

        A recognised date without a time gets the default meeting hour. A
        time without a date means today, or tomorrow if that time has passed.
        Relative expressions always resolve to the future; explicit dates
        are returned as given so the validator can explain the problem.
        """
        if not text or not text.strip():
            return None
        now = (now or self._clock()).astimezone(self.tz)
        today = now.date()
        lowered = " ".join(text.lower().split())

        day, remainder, explicit_time = self._parse_date(lowered, today)
        clock_time = explicit_time or self._parse_time(remainder)

        if day is None and clock_time is None:
            return None

        if day is None:
            candidate = self._combine(today, clock_time)
            if candidate <= now:
                candidate = self._combine(today + timedelta(days=1), clock_time)
            return candidate

        if clock_time is None:
            clock_time = time(self.business.default_hour, 0)
        return self._combine(day, clock_time)

    def _combine(self, day: date, clock_time: time) -> datetime:
        return datetime.combine(day, clock_time, tzinfo=self.tz)

    def _parse_date(self, text: str, today: date) -> tuple[Optional[date], str, Optional[time]]:
        """Find a date expression; return it with the text left after removing it."""
        match = ISO_DATE.search(text)
        if match:
            year, month, day_num, hour, minute = match.groups()
            found = self._safe_date(int(year), int(month), int(day_num))
            explicit = None
            if hour is not None and int(hour) < 24 and int(minute) < 60:
                explicit = time(int(hour), int(minute))
            return found, _cut(text, match), explicit

        match = SLASH_DATE.search(text)
        if match:
            day_num, month, year = (int(g) for g in match.groups())
            return self._safe_date(year, month, day_num), _cut(text, match), None

        match = MONTH_DAY.search(text)
        if match:
            month_name, day_num, year = match.groups()
            return self._month_date(month_name, int(day_num), year, today), _cut(text, match), None

        match = DAY_MONTH.search(text)
        if match:
            day_num, month_name, year = match.groups()
            return self._month_date(month_name, int(day_num), year, today), _cut(text, match), None

        if "day after tomorrow" in text:
            return today + timedelta(days=2), text.replace("day after tomorrow", " "), None
        if "tomorrow" in text:
            return today + timedelta(days=1), text.replace("tomorrow", " "), None
        if "today" in text:
            return today, text.replace("today", " "), None

        match = WEEKDAY.search(text)
        if match:
            target = WEEKDAY_NAMES.index(match.group(2))
            days_ahead = (target - today.weekday()) % 7 or 7
            return today + timedelta(days=days_ahead), _cut(text, match), None

        if "next week" in text:
            return today + timedelta(days=7), text.replace("next week", " "), None

        return None, text, None

    def _safe_date(self, year: int, month: int, day_num: int) -> Optional[date]:
        try:
            return date(year, month, day_num)
        except ValueError:
            logger.debug("Ignoring impossible date %04d-%02d-%02d", year, month, day_num)
            return None

    def _month_date(self, month_name: str, day_num: int, year: Optional[str], today: date) -> Optional[date]:
        month = MONTHS[month_name[:3]]
        if year:
            return self._safe_date(int(year), month, day_num)
        found = self._safe_date(today.year, month, day_num)
        if found is not None and found < today:
            found = self._safe_date(today.year + 1, month, day_num)
        return found

    def _parse_time(self, text: str) -> Optional[time]:
        if "noon" in text or "midday" in text:
            return time(12, 0)

        match = TIME_MERIDIEM.search(text)
        if match:
            hour = int(match.group(1))
            minute = int(match.group(2) or 0)
            meridiem = match.group(3).replace(".", "")
            if hour > 12 or minute > 59:
                return None
            if meridiem == "pm" and hour != 12:
                hour += 12
            if meridiem == "am" and hour == 12:
                hour = 0
            return time(hour, minute)

        match = TIME_24H.search(text)
        if match:
            return time(int(match.group(1)), int(match.group(2)))

        match = TIME_AT.search(text)
        if match:
            hour = int(match.group(1))
            if hour > 23:
                return None
            # "at 3" during business hours means the afternoon
            if 1 <= hour < 8:
                hour += 12
            return time(hour, 0)

        return None

    # ------------------------------------------------------------------ #
    # Durations
    # ------------------------------------------------------------------ #

    def parse_duration(self, text: str) -> Optional[int]:
        """
        Parse a meeting length in minutes, or ``None`` when nothing parses.

        The result is not checked against the allowed durations except for
        bare numbers, which are only accepted when they are allowed values.
        """
        if not text:
            return None
        lowered = " ".join(text.lower().split())

        match = DURATION_UNIT.search(lowered)
        if match:
            amount = float(match.group(1))
            if match.group(2).startswith("h"):
                amount *= 60
            return int(round(amount))

        if "three quarters" in lowered:
            return 45
        if "quarter" in lowered:
            return 15
        if "half" in lowered and "hour" in lowered:
            if "and a half" in lowered or "hour and" in lowered:
                return 90
            return 30
        if "hour" in lowered:
            return 60

        for word, minutes in NUMBER_WORDS.items():
            if re.search(rf"\b{word}\b", lowered):
                return minutes

        for match in BARE_NUMBER.finditer(lowered):
            value = int(match.group(1))
            if value in self.business.allowed_durations:
                return value
        return None


def _cut(text: str, match: re.Match) -> str:
    return text[:match.start()] + " " + text[match.end():]
