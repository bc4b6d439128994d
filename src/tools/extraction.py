"""
Language extraction collaborators: booking-intent detection and field
extraction from free text.

``KeywordExtractionClient`` works offline with keyword and pattern
matching; the service also uses it as the registered fallback when the
LLM-backed ``OpenAIExtractionClient`` is failing.
"""

import json
import logging
from typing import Any, Optional, Protocol

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError, field_validator

from src.config import ModelConfig, settings
from src.conversation.slot_manager import parse_email, parse_free_text, parse_name
from src.prompts.system_prompts import EXTRACTION_SYSTEM_PROMPT, INTENT_SYSTEM_PROMPT
from src.resilience.errors import DependencyError, ErrorKind
from src.scheduling.date_parser import DateTimeParser, KeywordDateTimeParser
from src.utils import mentions_booking

logger = logging.getLogger(__name__)


class ExtractionClient(Protocol):
    async def classify_intent(self, utterance: str) -> bool:
        ...

    async def extract_fields(
        self,
        utterance: str,
        current_fields: dict[str, Any],
        current_step: str,
    ) -> dict[str, Any]:
        ...

    async def health_check(self) -> dict[str, Any]:
        ...


class ExtractedFields(BaseModel):
    """Shape of the JSON object the LLM is asked to return."""

    name: Optional[str] = None
    email: Optional[str] = None
    organization: Optional[str] = None
    inquiry: Optional[str] = None
    start_time: Optional[str] = None
    duration_minutes: Optional[int] = None

    @field_validator("name", "email", "organization", "inquiry", "start_time", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("duration_minutes", mode="before")
    @classmethod
    def _parse_minutes(cls, value: Any) -> Any:
        if isinstance(value, str):
            digits = "".join(ch for ch in value if ch.isdigit())
            return int(digits) if digits else None
        return value


class KeywordExtractionClient:
    """Offline extraction using the same parsers as the slot-filling steps."""

    def __init__(self, date_parser: Optional[DateTimeParser] = None) -> None:
        self.date_parser = date_parser or KeywordDateTimeParser()

    async def classify_intent(self, utterance: str) -> bool:
        return mentions_booking(utterance)

    async def extract_fields(
        self,
        utterance: str,
        current_fields: dict[str, Any],
        current_step: str,
    ) -> dict[str, Any]:
        found: dict[str, Any] = {}
        email = parse_email(utterance)
        if email:
            found["email"] = email

        if current_step == "name":
            name = parse_name(utterance)
            if name:
                found["name"] = name
        elif current_step == "organization":
            value = parse_free_text(utterance, 200)
            if value:
                found["organization"] = value
        elif current_step == "inquiry":
            value = parse_free_text(utterance)
            if value:
                found["inquiry"] = value
        elif current_step == "start_time":
            start = self.date_parser.parse_datetime(utterance)
            if start is not None:
                found["start_time"] = start
        elif current_step in ("duration", "duration_minutes"):
            minutes = self.date_parser.parse_duration(utterance)
            if minutes is not None:
                found["duration_minutes"] = minutes
        return found

    async def health_check(self) -> dict[str, Any]:
        return {"healthy": True, "mode": "keyword"}


class OpenAIExtractionClient:
    """LLM-backed extraction via the OpenAI chat completions API."""

    def __init__(
        self,
        model_config: Optional[ModelConfig] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.config = model_config or settings.model
        self._client = client or AsyncOpenAI(api_key=self.config.api_key or None)

    async def _complete(self, messages: list[dict[str, str]], **kwargs: Any) -> str:
        try:
            resp = await self._client.chat.completions.create(
                model=self.config.llm_model,
                messages=messages,
                temperature=self.config.llm_temperature,
                **kwargs,
            )
        except openai.APITimeoutError as exc:
            raise DependencyError("Extraction request timed out", ErrorKind.TIMEOUT) from exc
        except openai.APIConnectionError as exc:
            raise DependencyError(f"Network error: {exc}", ErrorKind.NETWORK) from exc
        return (resp.choices[0].message.content or "").strip()

    async def classify_intent(self, utterance: str) -> bool:
        if mentions_booking(utterance):
            return True
        answer = await self._complete([
            {"role": "system", "content": INTENT_SYSTEM_PROMPT},
            {"role": "user", "content": utterance},
        ])
        return answer.upper().startswith("YES")

    async def extract_fields(
        self,
        utterance: str,
        current_fields: dict[str, Any],
        current_step: str,
    ) -> dict[str, Any]:
        context = {
            "current_step": current_step,
            "collected": {k: str(v) for k, v in current_fields.items()},
            "message": utterance,
        }
        content = await self._complete(
            [
                {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
                {"role": "user", "content": json.dumps(context)},
            ],
            response_format={"type": "json_object"},
        )
        try:
            payload = ExtractedFields.model_validate(json.loads(content or "{}"))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Discarding malformed extraction output: %s", exc)
            return {}
        return payload.model_dump(exclude_none=True)

    async def health_check(self) -> dict[str, Any]:
        await self._client.models.list()
        return {"healthy": True, "model": self.config.llm_model}

    async def aclose(self) -> None:
        await self._client.close()
