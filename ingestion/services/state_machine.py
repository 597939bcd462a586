"""Integration connection lifecycle."""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional
import logging

from ingestion.adapters.base import IntegrationNotFoundError, InvalidTransitionError
from ingestion.core.config import frequency_to_duration
from ingestion.models import (
    ActivityType,
    ConnectionStatus,
    Integration,
    PlatformCredentials,
    SyncFrequency,
    SyncResult,
)
from ingestion.services.activity_log import ActivityLog
from ingestion.services.backoff import BackoffPolicy
from ingestion.services.integration_service import IntegrationService

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[ConnectionStatus, frozenset] = {
    ConnectionStatus.CONNECTED: frozenset({
        ConnectionStatus.CONNECTED, ConnectionStatus.ERROR, ConnectionStatus.DISCONNECTED,
    }),
    ConnectionStatus.ERROR: frozenset({
        ConnectionStatus.CONNECTED, ConnectionStatus.ERROR,
        ConnectionStatus.SUSPENDED, ConnectionStatus.DISCONNECTED,
    }),
    # Only via explicit reactivation / reconnection
    ConnectionStatus.SUSPENDED: frozenset({ConnectionStatus.CONNECTED}),
    ConnectionStatus.DISCONNECTED: frozenset({ConnectionStatus.CONNECTED}),
}

SYNCABLE_STATUSES = (ConnectionStatus.CONNECTED, ConnectionStatus.ERROR)


def _require_reason(reason: Optional[str]) -> str:
    if not reason or not str(reason).strip():
        raise ValueError("A non-empty reason is required for this transition")
    return str(reason)


class IntegrationStateMachine:
    """Sole writer of ``connection_status`` and its bookkeeping fields."""

    def __init__(
        self,
        integrations: IntegrationService,
        activity_log: ActivityLog,
        backoff: Optional[BackoffPolicy] = None,
    ):
        self.integrations = integrations
        self.activity_log = activity_log
        self.backoff = backoff or BackoffPolicy()

    # Queries

    def is_rate_limited(self, integration: Integration, now: Optional[datetime] = None) -> bool:
        return integration.is_rate_limited(now)

    def can_sync(self, integration: Integration, now: Optional[datetime] = None) -> bool:
        return (
            integration.enabled
            and integration.connection_status in SYNCABLE_STATUSES
            and not self.is_rate_limited(integration, now)
        )

    # Transitions

    async def record_success(self, integration_id: str, result: SyncResult) -> Integration:
        now = datetime.utcnow()
        return await self._transition(
            integration_id,
            sources=SYNCABLE_STATUSES,
            target=ConnectionStatus.CONNECTED,
            set_fields={
                "last_sync_at": now,
                "last_successful_sync_at": now,
                "sync_cursor": result.next_cursor,
                "error_count": 0,
                "error_message": None,
                "rate_limit_reset_at": None,
            },
            inc_fields={"total_synced_items": result.item_count},
        )

    async def record_failure(self, integration_id: str, reason: str) -> Integration:
        """Count a failure; suspends once the error threshold is reached."""
        reason = _require_reason(reason)
        integration = await self._transition(
            integration_id,
            sources=SYNCABLE_STATUSES,
            target=ConnectionStatus.ERROR,
            set_fields={
                "error_message": reason,
                "last_error_at": datetime.utcnow(),
            },
            inc_fields={"error_count": 1},
        )

        if self.backoff.should_suspend(integration.error_count):
            integration = await self.suspend(
                integration_id,
                f"Suspended after {integration.error_count} errors: {reason}",
            )
        return integration

    async def suspend(self, integration_id: str, reason: str) -> Integration:
        reason = _require_reason(reason)
        integration = await self._transition(
            integration_id,
            sources=(ConnectionStatus.ERROR,),
            target=ConnectionStatus.SUSPENDED,
            set_fields={"error_message": reason},
        )
        logger.warning(f"Integration {integration_id} suspended: {reason}", extra={"integration_id": integration_id})
        await self.activity_log.log(integration_id, ActivityType.SUSPENDED, reason)
        return integration

    async def reactivate(self, integration_id: str) -> Integration:
        integration = await self._transition(
            integration_id,
            sources=(ConnectionStatus.SUSPENDED,),
            target=ConnectionStatus.CONNECTED,
            set_fields={
                "error_count": 0,
                "error_message": None,
                "rate_limit_reset_at": None,
            },
        )
        await self.activity_log.log(integration_id, ActivityType.CONNECTED, "Reactivated after suspension")
        return integration

    async def disconnect(self, integration_id: str) -> Integration:
        integration = await self._transition(
            integration_id,
            sources=SYNCABLE_STATUSES,
            target=ConnectionStatus.DISCONNECTED,
            set_fields={
                "credentials.access_token": None,
                "credentials.refresh_token": None,
                "token_expires_at": None,
                "rate_limit_reset_at": None,
            },
        )
        await self.activity_log.log(integration_id, ActivityType.DISCONNECTED, "Disconnected from platform")
        return integration

    async def reconnect(
        self,
        integration_id: str,
        credentials: PlatformCredentials,
        token_expires_at: Optional[datetime] = None,
    ) -> Integration:
        integration = await self._transition(
            integration_id,
            sources=(ConnectionStatus.DISCONNECTED,),
            target=ConnectionStatus.CONNECTED,
            set_fields={
                "credentials": credentials,
                "token_expires_at": token_expires_at,
                "error_count": 0,
                "error_message": None,
                "rate_limit_reset_at": None,
            },
        )
        await self.activity_log.log(integration_id, ActivityType.CONNECTED, "Successfully connected to platform")
        return integration

    # Bookkeeping without a status change

    async def record_rate_limit(self, integration_id: str, resume_at: datetime) -> Integration:
        integration = await self._update(
            integration_id,
            sources=SYNCABLE_STATUSES,
            target="rate_limited",
            set_fields={"rate_limit_reset_at": resume_at},
        )
        await self.activity_log.log(
            integration_id, ActivityType.RATE_LIMITED, f"Rate limited until {resume_at.isoformat()}"
        )
        return integration

    async def record_token_refresh(
        self,
        integration_id: str,
        credentials: PlatformCredentials,
        expires_at: Optional[datetime],
    ) -> Integration:
        integration = await self._update(
            integration_id,
            sources=SYNCABLE_STATUSES,
            target="token_refreshed",
            set_fields={"credentials": credentials, "token_expires_at": expires_at},
        )
        await self.activity_log.log(integration_id, ActivityType.TOKEN_REFRESHED, "Access token refreshed")
        return integration

    async def touch_last_sync(self, integration_id: str, at: Optional[datetime] = None) -> Integration:
        return await self._update_unguarded(integration_id, {"last_sync_at": at or datetime.utcnow()})

    async def set_enabled(self, integration_id: str, enabled: bool) -> Integration:
        integration = await self._update_unguarded(integration_id, {"enabled": enabled})
        if enabled:
            await self.activity_log.log(integration_id, ActivityType.ENABLED, "Sync enabled")
        else:
            await self.activity_log.log(integration_id, ActivityType.DISABLED, "Sync disabled")
        return integration

    async def update_settings(
        self,
        integration_id: str,
        name: Optional[str] = None,
        sync_frequency: Optional[SyncFrequency] = None,
    ) -> Integration:
        set_fields: Dict[str, Any] = {}
        if name is not None:
            set_fields["name"] = name
        if sync_frequency is not None:
            # Rejects unknown frequencies before anything is written
            frequency_to_duration(sync_frequency)
            set_fields["sync_frequency"] = sync_frequency

        integration = await self._update_unguarded(integration_id, set_fields)
        changed = ", ".join(f"{key}={getattr(value, 'value', value)}" for key, value in set_fields.items())
        await self.activity_log.log(
            integration_id, ActivityType.SETTINGS_UPDATED, f"Settings updated: {changed or 'no changes'}"
        )
        return integration

    # Internals

    async def _update_unguarded(self, integration_id: str, set_fields: Dict[str, Any]) -> Integration:
        integration = await self.integrations.update_integration(integration_id, set_fields=set_fields)
        if integration is None:
            raise IntegrationNotFoundError(f"Integration {integration_id} not found")
        return integration

    async def _transition(
        self,
        integration_id: str,
        sources: Iterable[ConnectionStatus],
        target: ConnectionStatus,
        set_fields: Dict[str, Any],
        inc_fields: Optional[Dict[str, int]] = None,
    ) -> Integration:
        sources = tuple(sources)
        for source in sources:
            if target not in ALLOWED_TRANSITIONS[source]:
                raise InvalidTransitionError(integration_id, source.value, target.value)

        return await self._update(
            integration_id,
            sources=sources,
            target=target.value,
            set_fields={**set_fields, "connection_status": target},
            inc_fields=inc_fields,
        )

    async def _update(
        self,
        integration_id: str,
        sources: Iterable[ConnectionStatus],
        target: str,
        set_fields: Dict[str, Any],
        inc_fields: Optional[Dict[str, int]] = None,
    ) -> Integration:
        integration = await self.integrations.update_integration(
            integration_id,
            set_fields=set_fields,
            inc_fields=inc_fields,
            expected_statuses=sources,
        )
        if integration is not None:
            return integration

        current = await self.integrations.get_integration(integration_id)
        if current is None:
            raise IntegrationNotFoundError(f"Integration {integration_id} not found")
        raise InvalidTransitionError(integration_id, current.connection_status, target)
