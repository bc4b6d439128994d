"""
Shared ``httpx`` plumbing for the calendar and CRM webhook clients.

Clients make exactly one attempt per call. Retries, timeouts and circuit
breaking belong to the dependency orchestrator, so transport faults,
429s and 5xx responses are raised for it to classify, while other 4xx
rejections come back as soft failures.
"""

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 15.0


def is_soft_rejection(response: httpx.Response) -> bool:
    """4xx responses other than 429 are answers, not outages."""
    return 400 <= response.status_code < 500 and response.status_code != 429


class WebhookClient:
    """Thin async wrapper around one JSON webhook endpoint."""

    def __init__(
        self,
        url: str,
        token: str = "",
        *,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not url:
            raise ValueError("Webhook URL is required")
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.url = url
        self._client = httpx.AsyncClient(headers=headers, timeout=timeout, transport=transport)

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        """POST the payload; raise for transport faults, 429 and 5xx."""
        response = await self._client.post(self.url, json=payload)
        if response.status_code >= 500 or response.status_code == 429:
            logger.warning("Webhook %s answered %d", self.url, response.status_code)
            response.raise_for_status()
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def health_check(self) -> dict[str, Any]:
        response = await self._client.get(self.url)
        return {
            "healthy": response.status_code < 500,
            "status_code": response.status_code,
            "url": self.url,
        }

    async def aclose(self) -> None:
        await self._client.aclose()
