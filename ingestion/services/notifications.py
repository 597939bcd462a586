"""Out-of-band user notifications about integration health."""

from typing import Optional
import logging

import httpx

from ingestion.core.config import Settings, get_settings
from ingestion.models import Integration
from ingestion.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)

SUSPENSION_NOTICE_TASK = "suspension_notice"


class SuspensionNotifier:
    """Fire-and-forget suspension notices.

    The notice is enqueued and delivered by a separate unit of work, so a
    failure here never changes the outcome of the sync that suspended.
    """

    def __init__(self, queue: TaskQueue):
        self.queue = queue

    async def notify_suspension(self, integration: Integration) -> None:
        try:
            await self.queue.enqueue(
                SUSPENSION_NOTICE_TASK,
                {
                    "integration_id": integration.id,
                    "user_id": integration.user_id,
                    "platform": integration.platform_name,
                    "reason": integration.error_message,
                    "error_count": integration.error_count,
                },
            )
        except Exception as e:
            logger.error(
                f"Failed to enqueue suspension notice for integration {integration.id}: {e}",
                extra={"integration_id": integration.id},
            )


class NotificationClient:
    """Delivers queued notices to the notification service."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.http_client = http_client or httpx.AsyncClient(timeout=self.settings.request_timeout)

    async def aclose(self) -> None:
        await self.http_client.aclose()

    async def send_suspension_notice(
        self,
        integration_id: str,
        user_id: str,
        platform: Optional[str] = None,
        reason: Optional[str] = None,
        error_count: Optional[int] = None,
    ) -> None:
        headers = {}
        if self.settings.service_api_key:
            headers["X-API-Key"] = self.settings.service_api_key

        response = await self.http_client.post(
            f"{self.settings.notification_service_url}/api/v1/notifications",
            json={
                "user_id": user_id,
                "type": "integration_suspended",
                "data": {
                    "integration_id": integration_id,
                    "platform": platform,
                    "reason": reason,
                    "error_count": error_count,
                },
            },
            headers=headers,
        )
        response.raise_for_status()
        logger.info(
            f"Sent suspension notice for integration {integration_id}",
            extra={"integration_id": integration_id},
        )
