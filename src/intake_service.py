"""
Caller-facing facade for the booking intake layer.

Wires the scheduling validator, booking store, dependency orchestrator and
conversation engine together, registers the three external dependencies
(extraction, calendar, CRM) with their fallbacks, and exposes the
operations a transport layer (HTTP routes, a voice bridge, the console
demo) calls.

Usage:
    service = IntakeService()
    await service.start()
    reply = await service.handle_message("web-abc123", "I'd like to book a call")
    ...
    await service.shutdown()
"""

import asyncio
import random
from datetime import date, datetime
from typing import Any, Callable, Mapping, Optional, Union

from src.booking.store import BookingStore, BookingValidationError
from src.config import AppConfig, settings
from src.conversation.engine import BookingConversationEngine, TurnResponse
from src.conversation.state_machine import ConversationState
from src.logging_context import get_session_logger
from src.prompts.prompt_templates import build_booking_confirmed_message
from src.resilience.errors import OrchestratorNotReadyError
from src.resilience.orchestrator import DependencyOrchestrator
from src.scheduling.date_parser import DateTimeParser, KeywordDateTimeParser
from src.scheduling.validator import SchedulingValidator
from src.schemas.booking_schema import (
    Booking,
    BookingFields,
    BookingSource,
    BookingStatus,
    CalendarEventResult,
    CrmContactResult,
    TimeSlot,
)
from src.schemas.conversation_schema import (
    Channel,
    ConfirmationResult,
    ConversationSummary,
    TurnResult,
)
from src.schemas.health_schema import HealthSnapshot
from src.tools.calendar import CalendarClient, InMemoryCalendarClient, WebhookCalendarClient
from src.tools.crm import CrmClient, InMemoryCrmClient, WebhookCrmClient
from src.tools.extraction import (
    ExtractionClient,
    KeywordExtractionClient,
    OpenAIExtractionClient,
)
from src.utils import utcnow

logger = get_session_logger(__name__)


def build_extraction_client(config: AppConfig, date_parser: DateTimeParser) -> ExtractionClient:
    """LLM extraction when an API key is configured, keyword extraction otherwise."""
    if config.model.api_key:
        return OpenAIExtractionClient(config.model)
    logger.info("OPENAI_API_KEY not set, using keyword extraction")
    return KeywordExtractionClient(date_parser)


def build_calendar_client(config: AppConfig) -> CalendarClient:
    integrations = config.integrations
    if integrations.calendar_webhook_url:
        return WebhookCalendarClient(
            integrations.calendar_webhook_url,
            integrations.calendar_api_token,
            timeout=config.resilience.call_timeout_seconds,
        )
    return InMemoryCalendarClient()


def build_crm_client(config: AppConfig) -> CrmClient:
    integrations = config.integrations
    if integrations.crm_webhook_url:
        return WebhookCrmClient(
            integrations.crm_webhook_url,
            integrations.crm_api_token,
            timeout=config.resilience.call_timeout_seconds,
        )
    return InMemoryCrmClient()


class IntakeService:
    """Single entry point for conversations, direct bookings and health."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        extraction_client: Optional[ExtractionClient] = None,
        calendar_client: Optional[CalendarClient] = None,
        crm_client: Optional[CrmClient] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Any] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.config = config or settings
        self._clock = clock
        self.validator = SchedulingValidator(self.config.business)
        self.date_parser = KeywordDateTimeParser(self.config.business, clock)
        self.store = BookingStore(self.validator, clock)
        self.orchestrator = DependencyOrchestrator(
            self.config.resilience, clock=clock, sleep=sleep, rng=rng
        )

        self.extraction = extraction_client or build_extraction_client(self.config, self.date_parser)
        self.calendar = calendar_client or build_calendar_client(self.config)
        self.crm = crm_client or build_crm_client(self.config)
        self._keyword_extraction = KeywordExtractionClient(self.date_parser)
        self._register_dependencies()

        self.engine = BookingConversationEngine(
            self.orchestrator,
            self.store,
            self.validator,
            date_parser=self.date_parser,
            config=self.config,
            clock=clock,
        )

    def _register_dependencies(self) -> None:
        orchestrator = self.orchestrator
        orchestrator.register_dependency(
            "extraction",
            {
                "classify_intent": self.extraction.classify_intent,
                "extract_fields": self.extraction.extract_fields,
            },
            health_check=self.extraction.health_check,
            client=self.extraction,
        )
        orchestrator.register_dependency(
            "calendar",
            {"create_event": self.calendar.create_event},
            health_check=self.calendar.health_check,
            client=self.calendar,
        )
        orchestrator.register_dependency(
            "crm",
            {"upsert_contact": self.crm.upsert_contact},
            health_check=self.crm.health_check,
            client=self.crm,
        )

        orchestrator.fallbacks.register_fallbacks("extraction", {
            "classify_intent": self._keyword_extraction.classify_intent,
            "extract_fields": lambda utterance, fields, step: {},
        })
        orchestrator.register_fallback(
            "calendar",
            "create_event",
            lambda booking: CalendarEventResult(
                success=False,
                error="Calendar service temporarily unavailable",
                fallback_used=True,
            ),
        )
        orchestrator.register_fallback(
            "crm",
            "upsert_contact",
            lambda booking: CrmContactResult(
                success=False,
                skipped=True,
                error="CRM service temporarily unavailable",
                fallback_used=True,
            ),
        )

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @property
    def ready(self) -> bool:
        return self.orchestrator.ready

    async def start(self) -> None:
        await self.orchestrator.initialize()
        logger.info("Intake service started for '%s'", self.config.business.name)

    async def shutdown(self) -> None:
        await self.orchestrator.shutdown()
        logger.info("Intake service stopped")

    def _require_ready(self) -> None:
        if not self.orchestrator.ready:
            raise OrchestratorNotReadyError("Intake service has not been started")

    # ------------------------------------------------------------------ #
    # Conversations
    # ------------------------------------------------------------------ #

    async def handle_message(
        self,
        session_id: str,
        message: str,
        channel: Union[Channel, str] = Channel.CHAT,
    ) -> TurnResponse:
        self._require_ready()
        return await self.engine.handle_utterance(session_id, message, channel)

    def process_turn(
        self,
        session_id: str,
        utterance: str,
        extracted_fields: Optional[Mapping[str, Any]] = None,
        channel: Union[Channel, str] = Channel.CHAT,
    ) -> TurnResult:
        self._require_ready()
        return self.engine.process_turn(session_id, utterance, extracted_fields, channel)

    async def confirm_booking(self, session_id: str) -> ConfirmationResult:
        self._require_ready()
        return await self.engine.confirm_booking(session_id)

    def cancel_conversation(self, session_id: str) -> bool:
        self._require_ready()
        return self.engine.cancel_conversation(session_id)

    def get_conversation(self, session_id: str) -> Optional[ConversationState]:
        self._require_ready()
        return self.engine.get_state(session_id)

    def list_conversations(self) -> list[ConversationSummary]:
        """Booking conversations still in progress, oldest first."""
        self._require_ready()
        return self.engine.list_active()

    def reap_expired_sessions(self) -> list[str]:
        self._require_ready()
        return self.engine.reap_expired()

    # ------------------------------------------------------------------ #
    # Bookings
    # ------------------------------------------------------------------ #

    async def create_booking_direct(
        self,
        fields: Union[BookingFields, Mapping[str, Any]],
    ) -> ConfirmationResult:
        """
        Book without a conversation, e.g. from a form submission.

        Raises:
            BookingValidationError: The fields fail validation; ``field``
                names the offending input.
        """
        self._require_ready()
        booking = self.store.create(fields, source=BookingSource.DIRECT)
        integrations = await self.engine.run_integrations(booking)
        booking = self.store.require(booking.id)
        return ConfirmationResult(
            success=True,
            booking=booking,
            integrations=integrations,
            message=build_booking_confirmed_message(booking, self.config.business, integrations),
        )

    def get_availability(self, day: Union[date, str], duration_minutes: int = 30) -> list[TimeSlot]:
        """Free slots on one day for the given meeting length."""
        self._require_ready()
        if isinstance(day, str):
            try:
                day = date.fromisoformat(day.strip())
            except ValueError:
                raise BookingValidationError(
                    f"Invalid date {day!r}; expected YYYY-MM-DD", field="date"
                ) from None
        if duration_minutes not in self.config.business.allowed_durations:
            raise BookingValidationError(
                f"Duration must be one of: {self.validator.durations_label} minutes",
                field="duration_minutes",
            )
        return self.validator.enumerate_slots(day, duration_minutes, self.store.list(), now=self._clock())

    def get_booking(self, booking_id: str) -> Booking:
        self._require_ready()
        return self.store.require(booking_id)

    def list_bookings(self, status: Optional[Union[BookingStatus, str]] = None) -> list[Booking]:
        self._require_ready()
        return self.store.list(status)

    def set_booking_status(self, booking_id: str, status: Union[BookingStatus, str]) -> Booking:
        self._require_ready()
        return self.store.set_status(booking_id, status)

    # ------------------------------------------------------------------ #
    # Health
    # ------------------------------------------------------------------ #

    def get_dependency_health(self) -> HealthSnapshot:
        """Breaker state per dependency; available before ``start()`` so readiness can be probed."""
        return self.orchestrator.get_health_snapshot()

    def reset_circuit(self, name: str) -> None:
        self._require_ready()
        self.orchestrator.reset_circuit(name)
