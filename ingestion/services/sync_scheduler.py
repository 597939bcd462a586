"""Per-integration sync unit of work."""

import asyncio
from datetime import datetime, timedelta
from typing import Optional
import logging

from ingestion.adapters.base import (
    AuthError,
    BasePlatformAdapter,
    IntegrationNotFoundError,
    InvalidTransitionError,
    TransientError,
)
from ingestion.adapters.registry import AdapterRegistry
from ingestion.core.config import Settings, get_settings, frequency_to_duration
from ingestion.models import (
    ActivityType,
    Integration,
    NextRun,
    PlatformCredentials,
    SyncResult,
)
from ingestion.services.activity_log import ActivityLog
from ingestion.services.backoff import BackoffPolicy, ErrorKind, SyncAction
from ingestion.services.credentials import CredentialStore
from ingestion.services.integration_service import IntegrationService
from ingestion.services.notifications import SuspensionNotifier
from ingestion.services.state_machine import IntegrationStateMachine, SYNCABLE_STATUSES
from ingestion.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)

SYNC_TASK = "integration_sync"


def sync_run(integration_id: str, delay: timedelta = timedelta(0), reason: str = "") -> NextRun:
    return NextRun(task_name=SYNC_TASK, args={"integration_id": integration_id}, delay=delay, reason=reason)


class SyncScheduler:
    """Runs one pull for one integration and decides when it runs next.

    ``run`` never enqueues anything itself: the returned ``NextRun`` is the
    single follow-up the worker schedules. Failures that should be retried
    are re-raised after the failure has been recorded so the queue's retry
    policy applies.
    """

    def __init__(
        self,
        integrations: IntegrationService,
        state_machine: IntegrationStateMachine,
        registry: AdapterRegistry,
        credentials: CredentialStore,
        activity_log: ActivityLog,
        notifier: SuspensionNotifier,
        backoff: Optional[BackoffPolicy] = None,
        settings: Optional[Settings] = None,
    ):
        self.integrations = integrations
        self.state_machine = state_machine
        self.registry = registry
        self.credentials = credentials
        self.activity_log = activity_log
        self.notifier = notifier
        self.backoff = backoff or state_machine.backoff
        self.settings = settings or get_settings()

    async def run(self, integration_id: str) -> Optional[NextRun]:
        integration = await self.integrations.get_integration(integration_id)
        if integration is None:
            logger.warning(f"Integration {integration_id} not found; dropping sync", extra={"integration_id": integration_id})
            return None

        if not integration.enabled or integration.connection_status not in SYNCABLE_STATUSES:
            logger.info(
                f"Skipping sync for integration {integration_id} ({integration.connection_status}, enabled={integration.enabled})",
                extra={"integration_id": integration_id},
            )
            return None

        now = datetime.utcnow()
        if self.state_machine.is_rate_limited(integration, now):
            delay = integration.rate_limit_reset_at - now
            logger.info(
                f"Integration {integration_id} is rate limited; deferring {delay.total_seconds():.0f}s",
                extra={"integration_id": integration_id},
            )
            return sync_run(integration_id, delay, reason="rate_limited")

        try:
            result = await self._sync(integration, now)
        except Exception as e:
            return await self._handle_failure(integration, e)

        return await self._handle_success(integration, result)

    async def enqueue_overdue(self, queue: TaskQueue, now: Optional[datetime] = None, page_size: int = 100) -> int:
        """Enqueue a sync for every integration whose schedule has lapsed.

        Integrations that never synced count as overdue. Integrations
        written to within the grace period are skipped: a sync or queue
        retry for them is still in flight.
        """
        now = now or datetime.utcnow()
        grace = timedelta(seconds=self.settings.sweep_grace_seconds)
        filters = {
            "enabled": True,
            "connection_status": {"$in": [status.value for status in SYNCABLE_STATUSES]},
        }

        enqueued = 0
        skip = 0
        while True:
            batch = await self.integrations.list_integrations(filters, skip=skip, limit=page_size)
            for integration in batch:
                if integration.is_rate_limited(now) or integration.updated_at + grace > now:
                    continue
                if integration.last_sync_at is None or integration.is_sync_overdue(now, grace):
                    await queue.enqueue(SYNC_TASK, {"integration_id": integration.id})
                    enqueued += 1

            if len(batch) < page_size:
                break
            skip += page_size

        if enqueued:
            logger.info(f"Enqueued {enqueued} overdue integration syncs")
        return enqueued

    async def _sync(self, integration: Integration, now: datetime) -> SyncResult:
        credentials = self.credentials.decrypt(integration.credentials)
        refreshed = False
        if self.credentials.needs_refresh(integration, now):
            credentials, _ = await self.credentials.refresh_access_token(integration)
            refreshed = True

        await self.activity_log.log(integration.id, ActivityType.SYNC_STARTED, "Sync started")
        adapter = self.registry.get(integration.platform_name)

        try:
            return await self._invoke(adapter, credentials, integration.sync_cursor)
        except AuthError:
            if refreshed or not credentials.refresh_token:
                raise
            logger.info(
                f"Credentials rejected for integration {integration.id}; refreshing once",
                extra={"integration_id": integration.id},
            )

        credentials, _ = await self.credentials.refresh_access_token(integration)
        return await self._invoke(adapter, credentials, integration.sync_cursor)

    async def _invoke(
        self,
        adapter: BasePlatformAdapter,
        credentials: PlatformCredentials,
        cursor: Optional[str],
    ) -> SyncResult:
        try:
            return await asyncio.wait_for(
                adapter.sync(credentials, cursor),
                timeout=self.settings.sync_job_timeout,
            )
        except asyncio.TimeoutError:
            raise TransientError(f"Sync exceeded {self.settings.sync_job_timeout:.0f}s", timeout=True)

    async def _handle_success(self, integration: Integration, result: SyncResult) -> Optional[NextRun]:
        try:
            updated = await self.state_machine.record_success(integration.id, result)
        except (InvalidTransitionError, IntegrationNotFoundError) as e:
            # Disconnected or suspended while the pull was in flight
            logger.warning(
                f"Discarding sync result for integration {integration.id}: {e}",
                extra={"integration_id": integration.id},
            )
            return None

        await self.activity_log.log(
            integration.id, ActivityType.SYNC_COMPLETED, f"Synced {result.item_count} items"
        )
        logger.info(
            f"Synced {result.item_count} items for integration {integration.id}",
            extra={"integration_id": integration.id, "platform": integration.platform_name},
        )

        interval = frequency_to_duration(updated.sync_frequency)
        if interval is None:
            return None
        return sync_run(integration.id, interval, reason="scheduled")

    async def _handle_failure(self, integration: Integration, error: Exception) -> Optional[NextRun]:
        kind = self.backoff.classify(error)

        try:
            if kind == ErrorKind.RATE_LIMIT:
                await self.state_machine.record_rate_limit(integration.id, error.resume_at)
                delay = max(error.resume_at - datetime.utcnow(), timedelta(0))
                return sync_run(integration.id, delay, reason="rate_limited")

            updated = await self.state_machine.record_failure(
                integration.id, str(error) or error.__class__.__name__
            )
        except (InvalidTransitionError, IntegrationNotFoundError) as e:
            logger.warning(
                f"Could not record sync failure for integration {integration.id}: {e}",
                extra={"integration_id": integration.id},
            )
            return None

        if self.backoff.decide(kind, updated.error_count) == SyncAction.SUSPEND:
            await self.notifier.notify_suspension(updated)
            return None

        await self.activity_log.log(
            integration.id, ActivityType.SYNC_FAILED, f"{kind.value}: {updated.error_message}"
        )
        logger.error(
            f"Sync failed for integration {integration.id} ({kind.value}): {error}",
            extra={"integration_id": integration.id, "error_count": updated.error_count},
        )
        raise error
