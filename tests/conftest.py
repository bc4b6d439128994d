"""Shared test fixtures and helpers."""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

from src.booking.store import BookingStore
from src.config import (
    AppConfig,
    BusinessConfig,
    DependencySettings,
    IntegrationConfig,
    ModelConfig,
    ResilienceConfig,
    SessionConfig,
)
from src.intake_service import IntakeService
from src.resilience.orchestrator import DependencyOrchestrator
from src.scheduling.date_parser import KeywordDateTimeParser
from src.scheduling.validator import SchedulingValidator
from src.tools.calendar import InMemoryCalendarClient
from src.tools.crm import InMemoryCrmClient

LONDON = ZoneInfo("Europe/London")

# Wednesday 14 October 2026, 13:00 in London (BST)
FIXED_NOW = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)


def london(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    """Aware datetime in the business timezone used by the tests."""
    return datetime(year, month, day, hour, minute, tzinfo=LONDON)


class FakeClock:
    """Settable clock shared by the breaker, the store and the engine."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    """Async sleep stand-in that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FlakyCall:
    """Async callable that raises the queued errors before returning ``value``."""

    def __init__(self, errors: Optional[list[BaseException]] = None, value: Any = "ok") -> None:
        self.errors = list(errors or [])
        self.value = value
        self.calls = 0

    async def __call__(self, *args: Any) -> Any:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def business():
    return BusinessConfig(
        name="Metalogics",
        contact_email="hello@metalogics.io",
        timezone="Europe/London",
        open_hour=9,
        close_hour=18,
        business_days=(0, 1, 2, 3, 4),
        allowed_durations=(15, 30, 45, 60),
        slot_interval_minutes=30,
        default_hour=14,
    )


@pytest.fixture
def resilience_config():
    return ResilienceConfig(
        extraction=DependencySettings(failure_threshold=3, cooldown_seconds=30),
        calendar=DependencySettings(failure_threshold=3, cooldown_seconds=45),
        crm=DependencySettings(failure_threshold=5, cooldown_seconds=60),
        call_timeout_seconds=10,
        health_check_timeout_seconds=5,
    )


@pytest.fixture
def app_config(business, resilience_config):
    return AppConfig(
        business=business,
        resilience=resilience_config,
        session=SessionConfig(ttl_seconds=3600, max_field_attempts=3),
        model=ModelConfig(llm_model="gpt-4o-mini", llm_temperature=0.0, api_key=""),
        integrations=IntegrationConfig(
            calendar_webhook_url="",
            calendar_api_token="",
            crm_webhook_url="",
            crm_api_token="",
        ),
        log_level="INFO",
    )


@pytest.fixture
def validator(business):
    return SchedulingValidator(business)


@pytest.fixture
def date_parser(business, clock):
    return KeywordDateTimeParser(business, clock)


@pytest.fixture
def store(validator, clock):
    return BookingStore(validator, clock)


@pytest.fixture
def orchestrator(resilience_config, clock, fake_sleep):
    return DependencyOrchestrator(
        resilience_config, clock=clock, sleep=fake_sleep, rng=lambda: 0.0
    )


@pytest.fixture
def calendar_client():
    return InMemoryCalendarClient()


@pytest.fixture
def crm_client():
    return InMemoryCrmClient()


@pytest.fixture
def service(app_config, calendar_client, crm_client, clock, fake_sleep):
    return IntakeService(
        app_config,
        calendar_client=calendar_client,
        crm_client=crm_client,
        clock=clock,
        sleep=fake_sleep,
        rng=lambda: 0.0,
    )


@pytest_asyncio.fixture
async def started_service(service):
    await service.start()
    yield service
    await service.shutdown()


@pytest.fixture
def booking_fields():
    """A complete, valid set of fields: Monday 19 October 2026 at 10:00."""
    return {
        "name": "Jane Cooper",
        "email": "jane.cooper@example.com",
        "organization": "Northwind Traders",
        "inquiry": "Customer portal rebuild",
        "start_time": london(2026, 10, 19, 10),
        "duration_minutes": 30,
    }
