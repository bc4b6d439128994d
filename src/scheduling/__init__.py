from src.scheduling.date_parser import DateTimeParser, KeywordDateTimeParser
from src.scheduling.validator import ScheduleCheck, SchedulingValidator, Violation

__all__ = [
    "SchedulingValidator",
    "ScheduleCheck",
    "Violation",
    "DateTimeParser",
    "KeywordDateTimeParser",
]
