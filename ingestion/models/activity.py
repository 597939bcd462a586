"""Integration activity log models."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field
from enum import Enum


class ActivityType(str, Enum):
    """Audited integration events."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CONNECTION_ERROR = "connection_error"
    SUSPENDED = "suspended"
    SYNC_STARTED = "sync_started"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"
    SYNC_ERROR = "sync_error"
    RATE_LIMITED = "rate_limited"
    TOKEN_REFRESHED = "token_refreshed"
    WEBHOOK_RECEIVED = "webhook_received"
    SETTINGS_UPDATED = "settings_updated"
    ENABLED = "enabled"
    DISABLED = "disabled"


class ActivityLogEntry(BaseModel):
    """Append-only audit record for one integration event."""
    id: Optional[str] = Field(default=None, alias="_id")
    integration_id: str
    activity_type: ActivityType
    details: Optional[str] = None
    performed_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True
        use_enum_values = True
