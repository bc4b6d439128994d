"""Tests for the booking slot definitions, parsers and validators."""

from datetime import datetime

import pytest

from src.conversation.slot_manager import SlotManager, parse_email, parse_name
from src.schemas.conversation_schema import BookingStep
from tests.conftest import FIXED_NOW, LONDON, london


@pytest.fixture
def slot_manager(business, date_parser):
    return SlotManager(business, date_parser)


class TestStepOrder:
    def test_fields_in_order(self, slot_manager):
        assert [d.field for d in slot_manager.steps] == [
            "name", "email", "organization", "inquiry", "start_time", "duration_minutes",
        ]

    def test_duration_step_maps_to_duration_field(self, slot_manager):
        assert slot_manager.definition_for(BookingStep.DURATION).field == "duration_minutes"

    def test_confirmation_has_no_slot(self, slot_manager):
        with pytest.raises(ValueError):
            slot_manager.definition_for(BookingStep.CONFIRMATION)

    def test_unknown_field(self, slot_manager):
        with pytest.raises(ValueError, match="Unknown slot"):
            slot_manager.definition_for_field("phone")

    def test_next_missing_on_empty(self, slot_manager):
        assert slot_manager.next_missing({}).field == "name"

    def test_next_missing_skips_filled(self, slot_manager):
        data = {"name": "Jane Cooper", "email": "jane@example.com"}
        assert slot_manager.next_missing(data).field == "organization"

    def test_blank_value_counts_as_missing(self, slot_manager):
        assert slot_manager.next_missing({"name": "  "}).field == "name"

    def test_complete(self, slot_manager, booking_fields):
        assert slot_manager.is_complete(booking_fields)
        assert slot_manager.next_missing(booking_fields) is None


class TestNameParsing:
    @pytest.mark.parametrize("text,expected", [
        ("Jane Cooper", "Jane Cooper"),
        ("My name is Jane Cooper", "Jane Cooper"),
        ("Hi, I'm Jane Cooper.", "Jane Cooper"),
        ("this is Mary O'Neil-Smith", "Mary O'Neil-Smith"),
        ("José Álvarez", "José Álvarez"),
        ("Callum Reid", "Callum Reid"),
    ])
    def test_accepts(self, text, expected):
        assert parse_name(text) == expected

    @pytest.mark.parametrize("text", [
        "I want to book a meeting",
        "jane@example.com",
        "Agent 007",
        "J",
        "one two three four five six",
        "",
    ])
    def test_rejects(self, text):
        assert parse_name(text) is None


class TestEmailParsing:
    def test_email_in_sentence(self):
        assert parse_email("Sure, it's Jane.Cooper@Example.com") == "jane.cooper@example.com"

    def test_no_email(self):
        assert parse_email("I'd rather not say") is None


class TestParseAndCoerce:
    def test_parse_uses_step_parser(self, slot_manager):
        assert slot_manager.parse("start_time", "next monday at 10am") == london(2026, 10, 19, 10)

    def test_parse_blank(self, slot_manager):
        assert slot_manager.parse("organization", "   ") is None

    def test_parse_organization_trims(self, slot_manager):
        assert slot_manager.parse("organization", "  Northwind Traders ") == "Northwind Traders"

    def test_coerce_iso_string(self, slot_manager):
        assert slot_manager.coerce("start_time", "2026-10-19T10:00:00") == london(2026, 10, 19, 10)

    def test_coerce_naive_datetime(self, slot_manager):
        value = slot_manager.coerce("start_time", datetime(2026, 10, 19, 10))
        assert value.tzinfo == LONDON

    def test_coerce_natural_language_start(self, slot_manager):
        assert slot_manager.coerce("start_time", "tomorrow at 3pm", FIXED_NOW) == london(2026, 10, 15, 15)

    def test_coerce_duration_number(self, slot_manager):
        assert slot_manager.coerce("duration_minutes", 45.0) == 45

    def test_coerce_duration_text(self, slot_manager):
        assert slot_manager.coerce("duration_minutes", "an hour") == 60

    def test_coerce_email_normalizes(self, slot_manager):
        assert slot_manager.coerce("email", " Jane@Example.com ") == "jane@example.com"

    def test_coerce_blank_is_none(self, slot_manager):
        assert slot_manager.coerce("name", "") is None
        assert slot_manager.coerce("name", None) is None


class TestValidation:
    def test_allowed_duration(self, slot_manager):
        assert slot_manager.validate("duration_minutes", 45) is None

    def test_disallowed_duration(self, slot_manager):
        assert slot_manager.validate("duration_minutes", 20) == "Duration must be one of: 15, 30, 45, 60 minutes"

    def test_invalid_email(self, slot_manager):
        assert slot_manager.validate("email", "jane@") == "Invalid email format"

    def test_free_text_has_no_validator(self, slot_manager):
        assert slot_manager.validate("inquiry", "Anything at all") is None


class TestCorrections:
    @pytest.mark.parametrize("text,field", [
        ("actually my email is wrong", "email"),
        ("can we change the time", "start_time"),
        ("the company name is wrong", "name"),
        ("wrong company", "organization"),
        ("make it a different duration", "duration_minutes"),
        ("let's fix the project description", "inquiry"),
    ])
    def test_field_named(self, slot_manager, text, field):
        assert slot_manager.field_named_in(text).field == field

    def test_no_field_named(self, slot_manager):
        assert slot_manager.field_named_in("hmm, not sure") is None


class TestPrompts:
    def test_email_prompt_uses_name(self, slot_manager):
        prompt = slot_manager.definition_for_field("email").prompt({"name": "Jane Cooper"})
        assert "Jane Cooper" in prompt

    def test_start_time_prompt_lists_availability(self, slot_manager):
        prompt = slot_manager.definition_for_field("start_time").prompt({})
        assert "Monday to Friday, 9 AM to 6 PM" in prompt

    def test_duration_prompt_lists_options(self, slot_manager):
        prompt = slot_manager.definition_for_field("duration_minutes").prompt({})
        assert "15, 30, 45 or 60-minute" in prompt
