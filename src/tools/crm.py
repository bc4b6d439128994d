"""
CRM collaborators: upsert the booking's contact.

A contact is keyed by email; a second booking from the same person
updates the existing contact instead of creating a duplicate.
"""

import logging
import uuid
from typing import Any, Optional, Protocol

from src.schemas.booking_schema import Booking, CrmContactResult
from src.tools.webhook import WebhookClient, is_soft_rejection

logger = logging.getLogger(__name__)


class CrmClient(Protocol):
    async def upsert_contact(self, booking: Booking) -> CrmContactResult:
        ...

    async def health_check(self) -> dict[str, Any]:
        ...


def contact_payload(booking: Booking) -> dict[str, Any]:
    first, _, last = booking.name.partition(" ")
    return {
        "email": booking.email,
        "firstname": first,
        "lastname": last,
        "company": booking.organization,
        "inquiry": booking.inquiry,
        "booking_id": booking.id,
        "meeting_time": booking.start_time.isoformat(),
        "lifecycle_stage": "lead",
    }


class InMemoryCrmClient:
    """Keeps contacts keyed by email; set ``outage`` to make every call raise it."""

    def __init__(self) -> None:
        self.contacts: dict[str, dict[str, Any]] = {}
        self.outage: Optional[Exception] = None
        self.calls = 0

    async def upsert_contact(self, booking: Booking) -> CrmContactResult:
        self.calls += 1
        if self.outage is not None:
            raise self.outage
        existing = self.contacts.get(booking.email)
        if existing is not None:
            existing.update(contact_payload(booking))
            logger.info("CRM contact %s updated", existing["id"])
            return CrmContactResult(success=True, contact_id=existing["id"], created=False)

        contact_id = f"contact_{uuid.uuid4().hex[:10]}"
        self.contacts[booking.email] = {**contact_payload(booking), "id": contact_id}
        logger.info("CRM contact %s created", contact_id)
        return CrmContactResult(success=True, contact_id=contact_id, created=True)

    async def health_check(self) -> dict[str, Any]:
        return {"healthy": self.outage is None, "contacts": len(self.contacts)}


class WebhookCrmClient(WebhookClient):
    """Upserts contacts by POSTing them to a CRM webhook."""

    async def upsert_contact(self, booking: Booking) -> CrmContactResult:
        response = await self._post(contact_payload(booking))
        if response.status_code == 409:
            data = self._json(response)
            return CrmContactResult(
                success=True,
                contact_id=data.get("contact_id") or data.get("id"),
                skipped=True,
            )
        if is_soft_rejection(response):
            logger.warning(
                "CRM rejected contact for booking %s: %d", booking.id, response.status_code
            )
            return CrmContactResult(
                success=False,
                error=f"CRM rejected contact ({response.status_code})",
            )

        data = self._json(response)
        return CrmContactResult(
            success=True,
            contact_id=data.get("contact_id") or data.get("id"),
            created=response.status_code == 201 or bool(data.get("created")),
        )
