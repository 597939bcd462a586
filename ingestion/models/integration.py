"""Integration models."""

from datetime import datetime, timedelta
from typing import Optional
from pydantic import BaseModel, Field
from enum import Enum

from ingestion.core.config import frequency_to_duration


class PlatformName(str, Enum):
    """Supported social platforms."""
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    REDDIT = "reddit"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    SLACK = "slack"
    DISCORD = "discord"


class ConnectionStatus(str, Enum):
    """Integration connection status."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    SUSPENDED = "suspended"


class SyncFrequency(str, Enum):
    """How often an integration is pulled."""
    REALTIME = "realtime"
    EVERY_5_MINUTES = "every_5_minutes"
    EVERY_15_MINUTES = "every_15_minutes"
    EVERY_30_MINUTES = "every_30_minutes"
    HOURLY = "hourly"
    EVERY_3_HOURS = "every_3_hours"
    EVERY_6_HOURS = "every_6_hours"
    DAILY = "daily"
    WEEKLY = "weekly"


class OAuthToken(BaseModel):
    """Token grant returned by a platform's token endpoint."""
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_at: Optional[datetime] = None
    scope: Optional[str] = None


class PlatformCredentials(BaseModel):
    """Platform credential set. Tokens are encrypted at rest."""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    account_id: Optional[str] = None
    encrypted: bool = False


class Integration(BaseModel):
    """Integration model."""
    id: Optional[str] = Field(default=None, alias="_id")
    user_id: str
    platform_name: PlatformName
    name: str = ""
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED.value
    enabled: bool = True
    sync_frequency: Optional[SyncFrequency] = SyncFrequency.HOURLY.value

    # Authentication
    credentials: PlatformCredentials = Field(default_factory=PlatformCredentials)
    token_expires_at: Optional[datetime] = None

    # Sync progress
    sync_cursor: Optional[str] = None
    total_synced_items: int = 0
    last_sync_at: Optional[datetime] = None
    last_successful_sync_at: Optional[datetime] = None

    # Error tracking
    error_count: int = 0
    error_message: Optional[str] = None
    last_error_at: Optional[datetime] = None
    rate_limit_reset_at: Optional[datetime] = None

    # Metadata
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True
        use_enum_values = True

    def is_rate_limited(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return self.rate_limit_reset_at is not None and self.rate_limit_reset_at > now

    @property
    def next_sync_at(self) -> Optional[datetime]:
        if self.last_sync_at is None or not self.sync_frequency:
            return None
        return self.last_sync_at + frequency_to_duration(self.sync_frequency)

    def is_sync_overdue(self, now: Optional[datetime] = None, grace: timedelta = timedelta(0)) -> bool:
        next_sync_at = self.next_sync_at
        if next_sync_at is None:
            return False
        return next_sync_at + grace < (now or datetime.utcnow())

    def health_score(self, now: Optional[datetime] = None) -> int:
        """Score connection health from 0 to 100."""
        now = now or datetime.utcnow()
        if not self.enabled or self.connection_status != ConnectionStatus.CONNECTED:
            return 0

        score = 100.0

        # Recent sync (25 points)
        if self.last_successful_sync_at:
            hours_since_sync = (now - self.last_successful_sync_at).total_seconds() / 3600
            score -= min(hours_since_sync * 2, 25)
        else:
            score -= 25

        # Error rate (25 points)
        score -= min(self.error_count * 5, 25)

        # Rate limiting (20 points)
        if self.is_rate_limited(now):
            score -= 20

        return round(max(score, 0))

    def health_status(self, now: Optional[datetime] = None) -> str:
        score = self.health_score(now)
        if score >= 90:
            return "excellent"
        elif score >= 70:
            return "good"
        elif score >= 50:
            return "fair"
        elif score >= 30:
            return "poor"
        return "critical"
