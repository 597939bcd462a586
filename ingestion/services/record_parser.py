"""Hand-off of webhook payloads to the domain records service."""

from abc import ABC, abstractmethod
from typing import Optional
import logging

import httpx

from ingestion.adapters.base import FatalError, TransientError
from ingestion.core.config import Settings, get_settings
from ingestion.models import Integration, WebhookDelivery

logger = logging.getLogger(__name__)


class PayloadParser(ABC):
    """Turns a webhook payload into leads/mentions."""

    @abstractmethod
    async def parse(self, delivery: WebhookDelivery, integration: Integration) -> int:
        """Materialize domain records and return how many were created."""
        pass


class RecordsServiceParser(PayloadParser):
    """Posts payloads to the records service, which owns leads and mentions."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.http_client = http_client or httpx.AsyncClient(timeout=self.settings.request_timeout)

    async def aclose(self) -> None:
        await self.http_client.aclose()

    async def parse(self, delivery: WebhookDelivery, integration: Integration) -> int:
        headers = {}
        if self.settings.service_api_key:
            headers["X-API-Key"] = self.settings.service_api_key

        try:
            response = await self.http_client.post(
                f"{self.settings.records_service_url}/api/v1/ingest/webhook",
                json={
                    "integration_id": integration.id,
                    "user_id": integration.user_id,
                    "platform": delivery.platform,
                    "event_type": delivery.event_type,
                    "external_event_id": delivery.external_event_id,
                    "payload": delivery.payload,
                },
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise TransientError(f"Records service timed out: {e}", timeout=True)
        except httpx.TransportError as e:
            raise TransientError(f"Records service unreachable: {e}")

        if response.status_code >= 500:
            raise TransientError(f"Records service returned {response.status_code}")
        if response.status_code >= 400:
            raise FatalError(f"Records service rejected payload ({response.status_code}): {response.text[:200]}")

        created = response.json().get("created", 0)
        logger.debug(f"Records service created {created} records for webhook {delivery.id}")
        return created
