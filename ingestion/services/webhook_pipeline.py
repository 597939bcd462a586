"""Webhook ingestion: idempotent receipt and at-most-once processing."""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
import logging
import uuid

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from ingestion.adapters.base import (
    IntegrationNotFoundError,
    TransientError,
    WebhookRejectedError,
)
from ingestion.core.config import Settings, get_settings
from ingestion.core.database import Database, COLLECTIONS
from ingestion.models import ActivityType, NextRun, WebhookDelivery, WebhookStatus
from ingestion.services.activity_log import ActivityLog
from ingestion.services.integration_service import IntegrationService
from ingestion.services.record_parser import PayloadParser
from ingestion.services.state_machine import IntegrationStateMachine
from ingestion.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)

WEBHOOK_TASK = "webhook_process"


class WebhookPipeline:
    """Receives, deduplicates and processes inbound webhook deliveries.

    Deliveries move pending -> processing -> processed | failed. A failed
    delivery only goes back to pending through ``retry``.
    """

    def __init__(
        self,
        db: Database,
        integrations: IntegrationService,
        state_machine: IntegrationStateMachine,
        activity_log: ActivityLog,
        parser: PayloadParser,
        queue: TaskQueue,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.integrations = integrations
        self.state_machine = state_machine
        self.activity_log = activity_log
        self.parser = parser
        self.queue = queue
        self.settings = settings or get_settings()

    @property
    def collection(self):
        return self.db.get_collection(COLLECTIONS["webhook_deliveries"])

    async def receive(
        self,
        integration_id: str,
        platform: str,
        raw_payload: Any,
        external_event_id: str,
        event_type: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> WebhookDelivery:
        """Store a delivery and schedule its processing.

        A redelivered event returns the stored delivery and schedules nothing.
        """
        if not external_event_id:
            raise WebhookRejectedError("Webhook is missing its external event id")

        platform = getattr(platform, "value", platform)
        integration = await self.integrations.get_integration(integration_id)
        if integration is None:
            raise IntegrationNotFoundError(f"Integration {integration_id} not found")
        if integration.platform_name != platform:
            raise WebhookRejectedError(
                f"Webhook platform {platform} does not match integration platform {integration.platform_name}"
            )

        key = {"integration_id": integration_id, "external_event_id": external_event_id}
        existing = await self.collection.find_one(key)
        if existing:
            logger.debug(f"Duplicate webhook {external_event_id} for integration {integration_id}")
            return WebhookDelivery(**existing)

        delivery = WebhookDelivery(
            id=str(uuid.uuid4()),
            integration_id=integration_id,
            external_event_id=external_event_id,
            platform=platform,
            event_type=event_type,
            payload=raw_payload,
            headers=headers or {},
        )
        try:
            await self.collection.insert_one(delivery.model_dump(by_alias=True))
        except DuplicateKeyError:
            # Lost the race to a concurrent receive of the same event
            return WebhookDelivery(**await self.collection.find_one(key))

        logger.info(
            f"Received webhook {external_event_id} for integration {integration_id}",
            extra={"integration_id": integration_id, "delivery_id": delivery.id, "event_type": event_type},
        )
        await self.activity_log.log(
            integration_id,
            ActivityType.WEBHOOK_RECEIVED,
            f"Webhook received: {event_type or 'event'} ({external_event_id})",
        )
        await self.queue.enqueue(WEBHOOK_TASK, {"delivery_id": delivery.id})
        return delivery

    async def get_delivery(self, delivery_id: str) -> Optional[WebhookDelivery]:
        doc = await self.collection.find_one({"_id": delivery_id})
        return WebhookDelivery(**doc) if doc else None

    async def process(self, delivery_id: str) -> None:
        """Claim a pending delivery and hand its payload to the parser.

        Deliveries that are not pending are left untouched.
        """
        doc = await self.collection.find_one_and_update(
            {"_id": delivery_id, "status": WebhookStatus.PENDING.value},
            {"$set": {"status": WebhookStatus.PROCESSING.value}, "$inc": {"attempts": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            logger.debug(f"Webhook {delivery_id} is not pending; skipping")
            return

        delivery = WebhookDelivery(**doc)
        try:
            integration = await self.integrations.get_integration(delivery.integration_id)
            if integration is None:
                raise IntegrationNotFoundError(f"Integration {delivery.integration_id} not found")

            try:
                created = await asyncio.wait_for(
                    self.parser.parse(delivery, integration),
                    timeout=self.settings.webhook_job_timeout,
                )
            except asyncio.TimeoutError:
                raise TransientError(
                    f"Webhook processing exceeded {self.settings.webhook_job_timeout:.0f}s",
                    timeout=True,
                )

            await self.state_machine.touch_last_sync(delivery.integration_id)
        except Exception as e:
            await self._finish(delivery_id, WebhookStatus.FAILED, failure_reason=str(e) or e.__class__.__name__)
            logger.error(
                f"Webhook {delivery_id} failed: {e}",
                extra={"delivery_id": delivery_id, "integration_id": delivery.integration_id},
            )
            raise

        await self._finish(delivery_id, WebhookStatus.PROCESSED)
        logger.info(
            f"Processed webhook {delivery_id}: {created} records",
            extra={"delivery_id": delivery_id, "integration_id": delivery.integration_id},
        )

    async def retry(self, delivery_id: str) -> Optional[NextRun]:
        """Reset a failed delivery to pending and schedule its next attempt."""
        max_retries = self.settings.webhook_max_retries
        doc = await self.collection.find_one_and_update(
            {
                "_id": delivery_id,
                "status": WebhookStatus.FAILED.value,
                "retry_count": {"$lt": max_retries},
            },
            {"$set": {"status": WebhookStatus.PENDING.value}, "$inc": {"retry_count": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            logger.info(f"Webhook {delivery_id} is not retryable", extra={"delivery_id": delivery_id})
            return None

        retry_count = doc["retry_count"]
        delays = self.settings.webhook_retry_delays
        delay = delays[min(retry_count - 1, len(delays) - 1)]
        logger.info(
            f"Retrying webhook {delivery_id} in {delay}s (retry {retry_count}/{max_retries})",
            extra={"delivery_id": delivery_id},
        )
        return NextRun(
            task_name=WEBHOOK_TASK,
            args={"delivery_id": delivery_id},
            delay=timedelta(seconds=delay),
            reason=f"webhook retry {retry_count}",
        )

    async def _finish(
        self,
        delivery_id: str,
        status: WebhookStatus,
        failure_reason: Optional[str] = None,
    ) -> None:
        update: Dict[str, Any] = {"status": status.value, "processed_at": datetime.utcnow()}
        if failure_reason is not None:
            update["failure_reason"] = failure_reason
        await self.collection.update_one(
            {"_id": delivery_id, "status": WebhookStatus.PROCESSING.value},
            {"$set": update},
        )
