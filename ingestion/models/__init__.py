"""Database models for the ingestion engine."""

from .integration import (
    Integration,
    ConnectionStatus,
    OAuthToken,
    PlatformCredentials,
    PlatformName,
    SyncFrequency,
)
from .webhook import WebhookDelivery, WebhookStatus
from .activity import ActivityLogEntry, ActivityType
from .sync import SyncResult, NextRun

__all__ = [
    "Integration",
    "ConnectionStatus",
    "OAuthToken",
    "PlatformCredentials",
    "PlatformName",
    "SyncFrequency",
    "WebhookDelivery",
    "WebhookStatus",
    "ActivityLogEntry",
    "ActivityType",
    "SyncResult",
    "NextRun",
]
