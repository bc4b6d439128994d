"""
Slot definitions for the booking conversation: one step per required field.

Each step carries its own prompt, parser and validator, so the engine is
driven entirely by the ordered ``steps`` list. Adding a field means adding
a ``StepDefinition``, not another branch in the engine.

Usage:
    slots = SlotManager(settings.business, KeywordDateTimeParser())
    step = slots.next_missing(state.data)
    value = slots.parse(step.field, "next monday at 10am")
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping, Optional
from zoneinfo import ZoneInfo

from src.config import BusinessConfig, settings
from src.prompts.prompt_templates import build_step_prompt
from src.scheduling.date_parser import DateTimeParser, KeywordDateTimeParser
from src.schemas.conversation_schema import BookingStep
from src.utils import find_email, is_valid_email, mentions_booking, normalize_email

logger = logging.getLogger(__name__)

# Validation thresholds
MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 50
MAX_NAME_WORDS = 5
MAX_ORGANIZATION_LENGTH = 200

NAME_PREFIXES = re.compile(
    r"^(?:hi|hello|hey)?[\s,!.]*(?:my name is|my name's|name is|i am|i'm|im|it's|its|this is|call me)\s+",
    re.IGNORECASE,
)
NAME_PATTERN = re.compile(r"^[^\W\d_]+(?:[\s'.-]+[^\W\d_]+)*\.?$")


def parse_name(text: str) -> Optional[str]:
    """Take the utterance as a name when it looks like one."""
    candidate = NAME_PREFIXES.sub("", text.strip()).strip(" .,!")
    if _validate_name(candidate) is not None:
        return None
    return candidate


def _validate_name(value: str) -> Optional[str]:
    value = value.strip()
    if not MIN_NAME_LENGTH <= len(value) <= MAX_NAME_LENGTH:
        return "That doesn't look like a full name"
    if len(value.split()) > MAX_NAME_WORDS or "@" in value:
        return "That doesn't look like a full name"
    if not NAME_PATTERN.match(value) or mentions_booking(value):
        return "That doesn't look like a full name"
    return None


def parse_email(text: str) -> Optional[str]:
    found = find_email(text)
    return normalize_email(found) if found else None


def _validate_email(value: str) -> Optional[str]:
    return None if is_valid_email(value) else "Invalid email format"


def parse_free_text(text: str, max_length: Optional[int] = None) -> Optional[str]:
    value = text.strip()
    if not value or (max_length is not None and len(value) > max_length):
        return None
    return value


@dataclass(frozen=True)
class StepDefinition:
    """One required field of the booking and how to collect it."""

    step: BookingStep
    field: str
    display_name: str
    prompt: Callable[[Mapping[str, Any]], str]
    parser: Callable[..., Any]
    validator: Optional[Callable[[Any], Optional[str]]] = None
    keywords: tuple[str, ...] = field(default_factory=tuple)


class SlotManager:
    """Ordered step definitions plus the parsing and validation around them."""

    def __init__(
        self,
        business: Optional[BusinessConfig] = None,
        date_parser: Optional[DateTimeParser] = None,
    ) -> None:
        self.business = business or settings.business
        self.date_parser = date_parser or KeywordDateTimeParser(self.business)
        self.tz = ZoneInfo(self.business.timezone)
        self.steps: list[StepDefinition] = self._build_steps()
        self._by_field = {d.field: d for d in self.steps}
        self._by_step = {d.step: d for d in self.steps}

    def _build_steps(self) -> list[StepDefinition]:
        prompt = self._prompt
        return [
            StepDefinition(
                step=BookingStep.NAME,
                field="name",
                display_name="name",
                prompt=prompt("name"),
                parser=lambda text, now=None: parse_name(text),
                validator=_validate_name,
                keywords=("name",),
            ),
            StepDefinition(
                step=BookingStep.EMAIL,
                field="email",
                display_name="email address",
                prompt=prompt("email"),
                parser=lambda text, now=None: parse_email(text),
                validator=_validate_email,
                keywords=("email", "e-mail", "mail"),
            ),
            StepDefinition(
                step=BookingStep.ORGANIZATION,
                field="organization",
                display_name="company",
                prompt=prompt("organization"),
                parser=lambda text, now=None: parse_free_text(text, MAX_ORGANIZATION_LENGTH),
                keywords=("company", "organization", "organisation", "business"),
            ),
            StepDefinition(
                step=BookingStep.INQUIRY,
                field="inquiry",
                display_name="project details",
                prompt=prompt("inquiry"),
                parser=lambda text, now=None: parse_free_text(text),
                keywords=("inquiry", "enquiry", "project", "service"),
            ),
            StepDefinition(
                step=BookingStep.START_TIME,
                field="start_time",
                display_name="date and time",
                prompt=prompt("start_time"),
                parser=lambda text, now=None: self.date_parser.parse_datetime(text, now),
                keywords=("date", "time", "day", "when"),
            ),
            StepDefinition(
                step=BookingStep.DURATION,
                field="duration_minutes",
                display_name="duration",
                prompt=prompt("duration_minutes"),
                parser=lambda text, now=None: self.date_parser.parse_duration(text),
                validator=self._validate_duration,
                keywords=("duration", "length", "how long", "minutes"),
            ),
        ]

    def _prompt(self, field_name: str) -> Callable[[Mapping[str, Any]], str]:
        return lambda data: build_step_prompt(field_name, data, self.business)

    def _validate_duration(self, value: int) -> Optional[str]:
        if value not in self.business.allowed_durations:
            allowed = ", ".join(str(d) for d in self.business.allowed_durations)
            return f"Duration must be one of: {allowed} minutes"
        return None

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    def definition_for(self, step: BookingStep) -> StepDefinition:
        try:
            return self._by_step[step]
        except KeyError:
            raise ValueError(f"No slot for step: {step.value}") from None

    def definition_for_field(self, field_name: str) -> StepDefinition:
        try:
            return self._by_field[field_name]
        except KeyError:
            raise ValueError(f"Unknown slot: {field_name}") from None

    def next_missing(self, data: Mapping[str, Any]) -> Optional[StepDefinition]:
        """First required field still absent, in step order."""
        for definition in self.steps:
            value = data.get(definition.field)
            if value is None or (isinstance(value, str) and not value.strip()):
                return definition
        return None

    def is_complete(self, data: Mapping[str, Any]) -> bool:
        return self.next_missing(data) is None

    def field_named_in(self, text: str) -> Optional[StepDefinition]:
        """The step whose keywords appear in the text, for read-back corrections."""
        lowered = text.lower()
        for definition in self.steps:
            if any(re.search(rf"\b{re.escape(k)}\b", lowered) for k in definition.keywords):
                return definition
        return None

    # ------------------------------------------------------------------ #
    # Parsing
    # ------------------------------------------------------------------ #

    def parse(self, field_name: str, text: str, now: Optional[datetime] = None) -> Any:
        """Run the step's own parser over the raw utterance."""
        if not text or not text.strip():
            return None
        value = self.definition_for_field(field_name).parser(text, now)
        logger.debug("Parsed %s from utterance: %r", field_name, value)
        return value

    def coerce(self, field_name: str, value: Any, now: Optional[datetime] = None) -> Any:
        """Normalize an extracted value to the field's type; ``None`` if unusable."""
        if value is None or (isinstance(value, str) and not value.strip()):
            return None

        if field_name == "email":
            return parse_email(str(value))
        if field_name == "start_time":
            if isinstance(value, datetime):
                return value if value.tzinfo else value.replace(tzinfo=self.tz)
            try:
                parsed = datetime.fromisoformat(str(value).strip())
            except ValueError:
                return self.date_parser.parse_datetime(str(value), now)
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=self.tz)
        if field_name == "duration_minutes":
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return int(value)
            return self.date_parser.parse_duration(str(value))
        return str(value).strip()

    def validate(self, field_name: str, value: Any) -> Optional[str]:
        """Error message for an unacceptable value, or ``None``."""
        validator = self.definition_for_field(field_name).validator
        return validator(value) if validator else None
