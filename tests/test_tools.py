"""Tests for the extraction, calendar and CRM collaborators."""

import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from src.config import ModelConfig
from src.resilience.errors import DependencyError, ErrorKind, classify_error
from src.schemas.booking_schema import Booking, BookingStatus
from src.tools.calendar import InMemoryCalendarClient, WebhookCalendarClient, event_payload
from src.tools.crm import InMemoryCrmClient, WebhookCrmClient, contact_payload
from src.tools.extraction import (
    ExtractedFields,
    KeywordExtractionClient,
    OpenAIExtractionClient,
)
from tests.conftest import FIXED_NOW, london


def make_booking(**overrides) -> Booking:
    data = {
        "id": "b" * 32,
        "name": "Jane Cooper",
        "email": "jane.cooper@example.com",
        "organization": "Northwind Traders",
        "inquiry": "Customer portal rebuild",
        "start_time": london(2026, 10, 19, 10),
        "duration_minutes": 45,
        "status": BookingStatus.PENDING,
        "created_at": FIXED_NOW,
        "updated_at": FIXED_NOW,
    }
    data.update(overrides)
    return Booking(**data)


class FakeCompletions:
    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        message = SimpleNamespace(content=reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeOpenAI:
    def __init__(self, replies=()):
        self.completions = FakeCompletions(replies)
        self.chat = SimpleNamespace(completions=self.completions)
        self.closed = False

        async def list_models():
            return []

        self.models = SimpleNamespace(list=list_models)

    async def close(self):
        self.closed = True


@pytest.fixture
def model_config():
    return ModelConfig(llm_model="gpt-4o-mini", llm_temperature=0.0, api_key="sk-test")


class TestKeywordExtraction:
    @pytest.fixture
    def client(self, date_parser):
        return KeywordExtractionClient(date_parser)

    @pytest.mark.asyncio
    async def test_booking_intent(self, client):
        assert await client.classify_intent("I'd like to book a consultation")

    @pytest.mark.asyncio
    async def test_no_booking_intent(self, client):
        assert not await client.classify_intent("What's your office address?")

    @pytest.mark.asyncio
    async def test_name_step(self, client):
        fields = await client.extract_fields("My name is Jane Cooper", {}, "name")
        assert fields == {"name": "Jane Cooper"}

    @pytest.mark.asyncio
    async def test_email_found_at_any_step(self, client):
        fields = await client.extract_fields("it's Jane@Example.com", {}, "organization")
        assert fields["email"] == "jane@example.com"

    @pytest.mark.asyncio
    async def test_start_time_step(self, client):
        fields = await client.extract_fields("next Monday at 10am", {}, "start_time")
        assert fields == {"start_time": london(2026, 10, 19, 10)}

    @pytest.mark.asyncio
    async def test_duration_step(self, client):
        fields = await client.extract_fields("half an hour", {}, "duration")
        assert fields == {"duration_minutes": 30}

    @pytest.mark.asyncio
    async def test_nothing_found(self, client):
        assert await client.extract_fields("hmm", {}, "start_time") == {}

    @pytest.mark.asyncio
    async def test_health(self, client):
        assert (await client.health_check())["healthy"]


class TestExtractedFields:
    def test_blank_values_dropped(self):
        fields = ExtractedFields.model_validate({"name": "  ", "email": "jane@x.com"})
        assert fields.model_dump(exclude_none=True) == {"email": "jane@x.com"}

    def test_minutes_from_text(self):
        assert ExtractedFields.model_validate({"duration_minutes": "45 minutes"}).duration_minutes == 45

    def test_minutes_without_digits(self):
        assert ExtractedFields.model_validate({"duration_minutes": "a while"}).duration_minutes is None


class TestOpenAIExtraction:
    @pytest.mark.asyncio
    async def test_keyword_shortcut_skips_llm(self, model_config):
        fake = FakeOpenAI()
        client = OpenAIExtractionClient(model_config, client=fake)
        assert await client.classify_intent("Can I book a call?")
        assert fake.completions.requests == []

    @pytest.mark.asyncio
    async def test_llm_intent_yes(self, model_config):
        fake = FakeOpenAI(["YES"])
        client = OpenAIExtractionClient(model_config, client=fake)
        assert await client.classify_intent("We need help with our online shop")
        assert fake.completions.requests[0]["model"] == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_llm_intent_no(self, model_config):
        client = OpenAIExtractionClient(model_config, client=FakeOpenAI(["NO"]))
        assert not await client.classify_intent("What's the weather?")

    @pytest.mark.asyncio
    async def test_extract_fields_json(self, model_config):
        reply = json.dumps({"name": "Jane Cooper", "email": "", "duration_minutes": "30"})
        fake = FakeOpenAI([reply])
        client = OpenAIExtractionClient(model_config, client=fake)

        fields = await client.extract_fields("Jane Cooper, 30 minutes", {"inquiry": "SEO"}, "name")
        assert fields == {"name": "Jane Cooper", "duration_minutes": 30}

        request = fake.completions.requests[0]
        assert request["response_format"] == {"type": "json_object"}
        context = json.loads(request["messages"][1]["content"])
        assert context["current_step"] == "name"
        assert context["collected"] == {"inquiry": "SEO"}

    @pytest.mark.asyncio
    async def test_malformed_json_is_empty(self, model_config):
        client = OpenAIExtractionClient(model_config, client=FakeOpenAI(["not json"]))
        assert await client.extract_fields("hello", {}, "name") == {}

    @pytest.mark.asyncio
    async def test_timeout_mapped(self, model_config):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        client = OpenAIExtractionClient(
            model_config, client=FakeOpenAI([openai.APITimeoutError(request=request)])
        )
        with pytest.raises(DependencyError) as exc_info:
            await client.extract_fields("hello", {}, "name")
        assert exc_info.value.kind == ErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_connection_error_mapped(self, model_config):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        client = OpenAIExtractionClient(
            model_config, client=FakeOpenAI([openai.APIConnectionError(request=request)])
        )
        with pytest.raises(DependencyError) as exc_info:
            await client.classify_intent("hello there")
        assert exc_info.value.kind == ErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_health_and_close(self, model_config):
        fake = FakeOpenAI()
        client = OpenAIExtractionClient(model_config, client=fake)
        assert (await client.health_check())["healthy"]
        await client.aclose()
        assert fake.closed


class TestInMemoryClients:
    @pytest.mark.asyncio
    async def test_calendar_creates_event(self):
        calendar = InMemoryCalendarClient("https://meet.example.com/")
        result = await calendar.create_event(make_booking())
        assert result.success
        assert result.meeting_link == f"https://meet.example.com/{result.event_id}"
        assert calendar.events[result.event_id]["duration_minutes"] == 45

    @pytest.mark.asyncio
    async def test_calendar_outage(self):
        calendar = InMemoryCalendarClient()
        calendar.outage = ConnectionRefusedError("down")
        with pytest.raises(ConnectionRefusedError):
            await calendar.create_event(make_booking())
        assert calendar.calls == 1
        assert not (await calendar.health_check())["healthy"]

    @pytest.mark.asyncio
    async def test_crm_upserts_by_email(self):
        crm = InMemoryCrmClient()
        first = await crm.upsert_contact(make_booking())
        second = await crm.upsert_contact(make_booking(id="c" * 32, organization="Contoso"))
        assert first.created
        assert not second.created
        assert first.contact_id == second.contact_id
        assert crm.contacts["jane.cooper@example.com"]["company"] == "Contoso"

    def test_event_payload(self):
        payload = event_payload(make_booking())
        assert payload["end"] == london(2026, 10, 19, 10, 45).isoformat()
        assert payload["attendees"] == [{"email": "jane.cooper@example.com", "name": "Jane Cooper"}]

    def test_contact_payload_splits_name(self):
        payload = contact_payload(make_booking(name="Jane van Cooper"))
        assert payload["firstname"] == "Jane"
        assert payload["lastname"] == "van Cooper"


class TestWebhookClients:
    URL = "https://hooks.example.com/booking"

    @pytest.mark.asyncio
    async def test_calendar_success(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"event_id": "evt_9", "meeting_link": "https://meet/evt_9"})

        client = WebhookCalendarClient(self.URL, "secret", transport=httpx.MockTransport(handler))
        result = await client.create_event(make_booking())
        await client.aclose()

        assert result.success
        assert result.event_id == "evt_9"
        assert seen[0].headers["Authorization"] == "Bearer secret"
        assert json.loads(seen[0].content)["booking_id"] == "b" * 32

    @pytest.mark.asyncio
    async def test_calendar_soft_rejection(self):
        client = WebhookCalendarClient(
            self.URL, transport=httpx.MockTransport(lambda r: httpx.Response(422))
        )
        result = await client.create_event(make_booking())
        assert not result.success
        assert "422" in result.error

    @pytest.mark.asyncio
    async def test_calendar_server_error_raises(self):
        client = WebhookCalendarClient(
            self.URL, transport=httpx.MockTransport(lambda r: httpx.Response(503))
        )
        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await client.create_event(make_booking())
        assert classify_error(exc_info.value).kind == ErrorKind.SERVICE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_rate_limit_raises(self):
        client = WebhookCrmClient(
            self.URL,
            transport=httpx.MockTransport(
                lambda r: httpx.Response(429, headers={"Retry-After": "3"})
            ),
        )
        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await client.upsert_contact(make_booking())
        error = classify_error(exc_info.value)
        assert error.kind == ErrorKind.RATE_LIMIT
        assert error.retry_after == 3.0

    @pytest.mark.asyncio
    async def test_crm_created(self):
        client = WebhookCrmClient(
            self.URL,
            transport=httpx.MockTransport(lambda r: httpx.Response(201, json={"id": "contact_7"})),
        )
        result = await client.upsert_contact(make_booking())
        assert result.success
        assert result.created
        assert result.contact_id == "contact_7"

    @pytest.mark.asyncio
    async def test_crm_conflict_is_skipped_success(self):
        client = WebhookCrmClient(
            self.URL,
            transport=httpx.MockTransport(
                lambda r: httpx.Response(409, json={"contact_id": "contact_1"})
            ),
        )
        result = await client.upsert_contact(make_booking())
        assert result.success
        assert result.skipped
        assert result.contact_id == "contact_1"

    @pytest.mark.asyncio
    async def test_crm_soft_rejection(self):
        client = WebhookCrmClient(
            self.URL, transport=httpx.MockTransport(lambda r: httpx.Response(400))
        )
        result = await client.upsert_contact(make_booking())
        assert not result.success

    @pytest.mark.asyncio
    async def test_health_check(self):
        client = WebhookCrmClient(
            self.URL, transport=httpx.MockTransport(lambda r: httpx.Response(405))
        )
        health = await client.health_check()
        assert health["healthy"]
        assert health["status_code"] == 405

    def test_url_required(self):
        with pytest.raises(ValueError, match="URL"):
            WebhookCalendarClient("")
