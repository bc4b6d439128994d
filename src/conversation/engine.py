"""
Booking conversation engine.

Drives one session from the first booking-intent utterance to a single
committed booking:

    utterance -> intent check (new sessions only) -> field extraction
      -> merge of the current step's field -> validation -> next prompt
      -> read-back -> "yes" -> store.create -> calendar + CRM side effects

Language extraction, calendar and CRM are only ever reached through the
dependency orchestrator. Side-effect failures are reported on the result
and never undo the booking.

Usage:
    engine = BookingConversationEngine(orchestrator, store, validator)
    result = await engine.handle_utterance("web-abc123", "I'd like to book a meeting")
    print(result.prompt)
"""

import asyncio
import re
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Union

from src.booking.store import BookingStore, BookingValidationError
from src.config import AppConfig, BusinessConfig, settings
from src.conversation.slot_manager import SlotManager, StepDefinition
from src.conversation.state_machine import ConversationState, SessionRegistry
from src.logging_context import get_session_logger, session_scope
from src.prompts.prompt_templates import (
    build_booking_confirmed_message,
    build_booking_failed_message,
    build_confirmation_prompt,
    build_degraded_response,
    build_guided_prompt,
    build_non_booking_response,
)
from src.resilience.errors import DependencyError
from src.resilience.orchestrator import DependencyOrchestrator
from src.scheduling.date_parser import DateTimeParser
from src.scheduling.validator import ScheduleCheck, SchedulingValidator
from src.schemas.booking_schema import (
    Booking,
    BookingStatus,
    CalendarEventResult,
    CrmContactResult,
    IntegrationResults,
)
from src.schemas.conversation_schema import (
    BookingStep,
    Channel,
    ConfirmationResult,
    ConversationSummary,
    IntentResult,
    TurnResult,
)
from src.utils import utcnow

logger = get_session_logger(__name__)

AFFIRMATIVE = re.compile(
    r"\b(yes|yeah|yep|yup|correct|confirm(ed)?|sure|ok(ay)?|perfect|right|"
    r"looks good|sounds good|go ahead|book it|that's fine)\b"
)
NEGATIVE = re.compile(
    r"\b(no|nope|not|wrong|incorrect|change|update|actually|wait|fix)\b"
)

INCOMPLETE_MESSAGE = (
    "Booking information is incomplete. Please provide all required details first."
)

TurnResponse = Union[TurnResult, ConfirmationResult, IntentResult]
IntegrationResult = Union[CalendarEventResult, CrmContactResult]


class BookingConversationEngine:
    """Slot-filling state machine with a single at-most-once booking commit."""

    def __init__(
        self,
        orchestrator: DependencyOrchestrator,
        store: BookingStore,
        validator: SchedulingValidator,
        *,
        date_parser: Optional[DateTimeParser] = None,
        config: Optional[AppConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        sessions: Optional[SessionRegistry] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.validator = validator
        self.config = config or settings
        self._clock = clock
        self.slots = SlotManager(validator.business, date_parser)
        self.sessions = sessions or SessionRegistry(self.config.session.ttl_seconds, clock)

    @property
    def business(self) -> BusinessConfig:
        return self.validator.business

    # ------------------------------------------------------------------ #
    # Session management
    # ------------------------------------------------------------------ #

    def get_state(self, session_id: str) -> Optional[ConversationState]:
        return self.sessions.get(session_id)

    def cancel_conversation(self, session_id: str) -> bool:
        """Abandon an in-progress conversation. Returns False when none exists."""
        cancelled = self.sessions.discard(session_id)
        if cancelled:
            logger.info("Booking conversation cancelled for session %s", session_id)
        return cancelled

    def reap_expired(self, now: Optional[datetime] = None) -> list[str]:
        return self.sessions.reap_expired(now or self._clock())

    def list_active(self) -> list[ConversationSummary]:
        return [
            ConversationSummary(
                session_id=state.session_id,
                channel=state.channel,
                step=state.step,
                created_at=state.created_at,
                updated_at=state.updated_at,
                fields_collected=len(state.data),
                is_complete=state.is_complete,
            )
            for state in self.sessions.active(self._clock())
        ]

    # ------------------------------------------------------------------ #
    # Slot filling
    # ------------------------------------------------------------------ #

    def process_turn(
        self,
        session_id: str,
        utterance: str,
        extracted_fields: Optional[Mapping[str, Any]] = None,
        channel: Union[Channel, str] = Channel.CHAT,
    ) -> TurnResult:
        """
        Apply one utterance to the session's current step.

        Only the field the current step asks for is merged: the extracted
        value when present and usable, else the step's own parser over the
        utterance. Values for other fields are ignored.
        """
        now = self._clock()
        state, created = self.sessions.get_or_create(session_id, Channel(channel), now)
        state.touch(now)

        if state.step == BookingStep.CONFIRMATION:
            return self._recap(state)

        definition = self.slots.definition_for(state.step)
        extracted = (extracted_fields or {}).get(definition.field)
        value = self.slots.coerce(definition.field, extracted, now)
        if value is None:
            value = self.slots.parse(definition.field, utterance, now)

        if value is None:
            if created:
                return self._turn(state, definition.prompt(state.data))
            return self._reject(state, definition, utterance.strip() or None, None)

        rejection = self._fill(state, definition, value, now)
        if rejection is not None:
            return rejection
        return self._advance(state, now)

    def _fill(
        self,
        state: ConversationState,
        definition: StepDefinition,
        value: Any,
        now: datetime,
    ) -> Optional[TurnResult]:
        """Validate and store one field; a TurnResult means the value was not accepted."""
        error = self.slots.validate(definition.field, value)
        if error:
            return self._reject(state, definition, str(value), error)

        check = self._schedule_check(state.data, definition.field, value, now)
        if check is not None and not check.ok:
            offending = check.field or definition.field
            if offending == definition.field:
                return self._reject(state, definition, None, check.message)

            # The new value is fine on its own but invalidates an earlier answer.
            state.data[definition.field] = value
            state.data.pop(offending, None)
            state.is_complete = False
            other = self.slots.definition_for_field(offending)
            state.move_to(other.step, now)
            return self._reject(state, other, None, check.message)

        state.data[definition.field] = value
        state.attempts.pop(definition.field, None)
        logger.debug("Session %s filled %s", state.session_id, definition.field)
        return None

    def _schedule_check(
        self,
        data: Mapping[str, Any],
        field_name: str,
        value: Any,
        now: datetime,
    ) -> Optional[ScheduleCheck]:
        if field_name not in ("start_time", "duration_minutes"):
            return None
        candidate = {**data, field_name: value}
        start = candidate.get("start_time")
        if start is None:
            return None
        duration = candidate.get("duration_minutes") or min(self.business.allowed_durations)
        return self.validator.validate(start, duration, self.store.list(), now=now)

    def _advance(self, state: ConversationState, now: datetime) -> TurnResult:
        following = self.slots.next_missing(state.data)
        if following is None:
            state.is_complete = True
            state.move_to(BookingStep.CONFIRMATION, now)
            return self._recap(state)
        state.is_complete = False
        state.move_to(following.step, now)
        return self._turn(state, following.prompt(state.data))

    def _reject(
        self,
        state: ConversationState,
        definition: StepDefinition,
        value: Optional[str],
        error: Optional[str],
    ) -> TurnResult:
        attempts = state.record_attempt(definition.field)
        prompt = build_guided_prompt(definition.field, self.business, value=value, error=error)
        if attempts >= self.config.session.max_field_attempts:
            prompt += (
                " If you'd prefer, you can also reach us directly at "
                f"{self.business.contact_email}."
            )
        logger.info(
            "Session %s: %s not accepted (attempt %d)%s",
            state.session_id, definition.field, attempts, f": {error}" if error else "",
        )
        return self._turn(state, prompt, error_field=definition.field)

    def _recap(self, state: ConversationState) -> TurnResult:
        return self._turn(
            state,
            build_confirmation_prompt(state.data, self.business),
            needs_confirmation=True,
        )

    def _turn(
        self,
        state: ConversationState,
        prompt: str,
        *,
        error_field: Optional[str] = None,
        needs_confirmation: bool = False,
    ) -> TurnResult:
        return TurnResult(
            session_id=state.session_id,
            step=state.step,
            prompt=prompt,
            is_complete=state.is_complete,
            data=dict(state.data),
            needs_confirmation=needs_confirmation,
            error_field=error_field,
        )

    # ------------------------------------------------------------------ #
    # Full turn handling
    # ------------------------------------------------------------------ #

    async def handle_utterance(
        self,
        session_id: str,
        utterance: str,
        channel: Union[Channel, str] = Channel.CHAT,
    ) -> TurnResponse:
        """
        Handle one caller utterance end to end.

        Turns for the same session are serialized; the whole turn, including
        its dependency calls, runs under that session's lock.
        """
        with session_scope(session_id):
            async with self.sessions.hold(session_id):
                return await self._handle_locked(session_id, utterance, channel)

    async def _handle_locked(
        self,
        session_id: str,
        utterance: str,
        channel: Union[Channel, str],
    ) -> TurnResponse:
        self.reap_expired()
        state = self.sessions.get(session_id)

        if state is None:
            intent = await self._classify_intent(session_id, utterance)
            if intent is not None:
                return intent
            extracted, degraded = await self._extract(utterance, {}, BookingStep.NAME)
            result = self.process_turn(session_id, utterance, extracted, channel)
            result.degraded = degraded
            return result

        if state.step == BookingStep.CONFIRMATION:
            return await self._handle_confirmation_reply(state, utterance)

        extracted, degraded = await self._extract(utterance, state.data, state.step)
        result = self.process_turn(session_id, utterance, extracted, state.channel)
        result.degraded = degraded
        return result

    async def _classify_intent(self, session_id: str, utterance: str) -> Optional[IntentResult]:
        """Return a reply when the utterance should not start a booking."""
        try:
            outcome = await self.orchestrator.invoke("extraction", "classify_intent", utterance)
        except DependencyError as exc:
            logger.warning("Intent classification unavailable (%s): %s", exc.kind.value, exc.message)
            return IntentResult(
                session_id=session_id, response=build_degraded_response(self.business), degraded=True
            )

        if outcome.value:
            return None
        return IntentResult(
            session_id=session_id,
            response=build_non_booking_response(self.business),
            degraded=outcome.fallback_used,
        )

    async def _extract(
        self,
        utterance: str,
        data: Mapping[str, Any],
        step: BookingStep,
    ) -> tuple[dict[str, Any], bool]:
        """Extracted fields plus whether a degraded path produced them."""
        try:
            outcome = await self.orchestrator.invoke(
                "extraction", "extract_fields", utterance, dict(data), step.value
            )
        except DependencyError as exc:
            logger.warning(
                "Field extraction unavailable (%s), using step parser: %s",
                exc.kind.value, exc.message,
            )
            return {}, True
        return dict(outcome.value or {}), outcome.fallback_used

    async def _handle_confirmation_reply(self, state: ConversationState, utterance: str) -> TurnResponse:
        reply = utterance.lower()
        affirmative = AFFIRMATIVE.search(reply) is not None
        negative = NEGATIVE.search(reply) is not None

        if affirmative and not negative:
            return await self._confirm(state.session_id)

        now = self._clock()
        state.touch(now)
        named = self.slots.field_named_in(reply)
        if named is not None:
            return self._correct(state, named, utterance, now)

        if negative:
            return self._turn(
                state,
                "No problem. What would you like to change? You can say name, email, "
                "company, project, date and time, or duration.",
                needs_confirmation=True,
            )
        return self._recap(state)

    def _correct(
        self,
        state: ConversationState,
        definition: StepDefinition,
        utterance: str,
        now: datetime,
    ) -> TurnResult:
        """Clear a field named in a read-back correction and collect it again."""
        state.data.pop(definition.field, None)
        state.is_complete = False
        state.move_to(definition.step, now)
        logger.info("Session %s correcting %s", state.session_id, definition.field)

        value = self.slots.parse(definition.field, utterance, now)
        if value is not None and definition.field not in ("name", "organization", "inquiry"):
            rejection = self._fill(state, definition, value, now)
            if rejection is None:
                return self._advance(state, now)
            return rejection

        return self._turn(
            state,
            f"No problem, let's update your {definition.display_name}. "
            + definition.prompt(state.data),
        )

    # ------------------------------------------------------------------ #
    # Commit
    # ------------------------------------------------------------------ #

    async def confirm_booking(self, session_id: str) -> ConfirmationResult:
        """Commit a completed conversation as a booking, then run side effects."""
        with session_scope(session_id):
            async with self.sessions.hold(session_id):
                return await self._confirm(session_id)

    async def _confirm(self, session_id: str) -> ConfirmationResult:
        state = self.sessions.get(session_id)
        if state is None or not state.is_complete:
            return ConfirmationResult(session_id=session_id, success=False, message=INCOMPLETE_MESSAGE)

        try:
            booking = self.store.create(state.data, source=state.channel.value)
        except BookingValidationError as exc:
            return self._commit_rejected(state, exc)

        self.sessions.discard(session_id)
        integrations = await self.run_integrations(booking)
        booking = self.store.require(booking.id)
        return ConfirmationResult(
            session_id=session_id,
            success=True,
            booking=booking,
            integrations=integrations,
            message=build_booking_confirmed_message(booking, self.business, integrations),
        )

    def _commit_rejected(self, state: ConversationState, exc: BookingValidationError) -> ConfirmationResult:
        now = self._clock()
        field_name = exc.field
        if field_name in ("name", "email", "organization", "inquiry", "start_time", "duration_minutes"):
            state.data.pop(field_name, None)
            state.is_complete = False
            state.move_to(self.slots.definition_for_field(field_name).step, now)
            prompt = build_guided_prompt(field_name, self.business, error=exc.message)
        else:
            prompt = build_booking_failed_message(exc.message)
        logger.warning("Booking commit rejected for session %s: %s", state.session_id, exc.message)
        return ConfirmationResult(
            session_id=state.session_id,
            success=False,
            message=prompt,
            error_field=field_name,
            error=exc.to_dict(),
        )

    async def run_integrations(self, booking: Booking) -> IntegrationResults:
        """
        Create the calendar event and upsert the CRM contact concurrently.

        Records any external ids on the booking and confirms it when at
        least one integration succeeded. Never raises for dependency failures.
        """
        calendar, crm = await asyncio.gather(
            self._side_effect("calendar", "create_event", booking, CalendarEventResult),
            self._side_effect("crm", "upsert_contact", booking, CrmContactResult),
        )
        results = IntegrationResults(calendar=calendar, crm=crm)

        self.store.attach_integrations(
            booking.id,
            calendar_event_id=calendar.event_id if calendar.success else None,
            meeting_link=calendar.meeting_link if calendar.success else None,
            crm_contact_id=crm.contact_id if crm.success else None,
        )
        if results.any_succeeded:
            self.store.set_status(booking.id, BookingStatus.CONFIRMED)
        else:
            logger.warning("Booking %s kept pending: no integration succeeded", booking.id)
        return results

    async def _side_effect(
        self,
        dependency: str,
        operation: str,
        booking: Booking,
        result_type: type[IntegrationResult],
    ) -> IntegrationResult:
        try:
            outcome = await self.orchestrator.invoke(dependency, operation, booking)
        except DependencyError as exc:
            logger.error(
                "%s.%s failed for booking %s (%s): %s",
                dependency, operation, booking.id, exc.kind.value, exc.message,
            )
            return result_type(success=False, error=exc.message)

        value = outcome.value
        if not isinstance(value, result_type):
            value = result_type.model_validate(value)
        if outcome.fallback_used:
            value = value.model_copy(update={"fallback_used": True})
        if not value.success:
            logger.warning(
                "%s.%s did not complete for booking %s: %s",
                dependency, operation, booking.id, value.error,
            )
        return value
