"""Configuration settings for the ingestion worker."""

from datetime import timedelta
from typing import Optional, Dict, Any
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # Service Configuration
    service_name: str = "ingestion-worker"
    environment: str = "development"
    debug: bool = False

    # Security
    encryption_key: str
    encryption_salt: str = "social-ingestion-tokens"

    # Database
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "social_ingestion"
    redis_url: str = "redis://localhost:6379"

    # Collaborator services
    records_service_url: str = "http://localhost:8003"
    notification_service_url: str = "http://localhost:8006"
    service_api_key: Optional[str] = None

    # OAuth Credentials
    twitter_client_id: Optional[str] = None
    twitter_client_secret: Optional[str] = None
    linkedin_client_id: Optional[str] = None
    linkedin_client_secret: Optional[str] = None
    reddit_client_id: Optional[str] = None
    reddit_client_secret: Optional[str] = None
    facebook_client_id: Optional[str] = None
    facebook_client_secret: Optional[str] = None

    # Connection health
    max_error_count: int = 5
    token_refresh_window_seconds: int = 300
    rate_limit_window_seconds: int = 900  # used when a 429 carries no reset hint
    sweep_grace_seconds: int = 900
    sweep_interval_seconds: int = 300

    # Timeouts (request timeout must stay below the job timeouts)
    request_timeout: float = 30.0
    sync_job_timeout: float = 300.0
    webhook_job_timeout: float = 120.0

    # Queue retry policies
    retry_max_attempts: int = 3
    retry_base_delay: float = 30.0
    retry_max_delay: float = 600.0
    timeout_retry_attempts: int = 5
    timeout_retry_delay: float = 30.0

    # Webhook retries
    webhook_max_retries: int = 3
    webhook_retry_delays: list[int] = [60, 300, 900]  # 1 min, 5 min, 15 min

    # Worker
    task_queue_prefix: str = "ingestion"
    worker_concurrency: int = 8
    worker_poll_interval: float = 1.0
    worker_batch_size: int = 50
    lock_timeout: float = 600.0
    lock_busy_delay: float = 15.0

    # Activity log
    activity_log_retention_days: int = 30

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


SYNC_FREQUENCIES: Dict[str, timedelta] = {
    "realtime": timedelta(minutes=1),
    "every_5_minutes": timedelta(minutes=5),
    "every_15_minutes": timedelta(minutes=15),
    "every_30_minutes": timedelta(minutes=30),
    "hourly": timedelta(hours=1),
    "every_3_hours": timedelta(hours=3),
    "every_6_hours": timedelta(hours=6),
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
}


def frequency_to_duration(frequency: Optional[str]) -> Optional[timedelta]:
    """Map a sync frequency name to its interval, ``None`` for sync-once."""
    if not frequency:
        return None
    frequency = getattr(frequency, "value", frequency)
    try:
        return SYNC_FREQUENCIES[frequency]
    except KeyError:
        raise ValueError(f"Unknown sync frequency: {frequency}")


# Platform specific configurations
PLATFORM_CONFIGS: Dict[str, Dict[str, Any]] = {
    "twitter": {
        "name": "Twitter",
        "type": "oauth2",
        "api_base_url": "https://api.twitter.com/2",
        "token_url": "https://api.twitter.com/2/oauth2/token",
        "page_size": 100,
        "rate_limit": {
            "calls": 180,
            "window": 900,  # 15 minutes
        }
    },
    "linkedin": {
        "name": "LinkedIn",
        "type": "oauth2",
        "api_base_url": "https://api.linkedin.com/rest",
        "token_url": "https://www.linkedin.com/oauth/v2/accessToken",
        "api_version": "202401",
        "page_size": 50,
        "rate_limit": {
            "calls": 100,
            "window": 86400,  # 1 day
        }
    },
    "reddit": {
        "name": "Reddit",
        "type": "oauth2",
        "api_base_url": "https://oauth.reddit.com",
        "token_url": "https://www.reddit.com/api/v1/access_token",
        "page_size": 100,
        "rate_limit": {
            "calls": 60,
            "window": 60,  # 1 minute
        }
    },
    "facebook": {
        "name": "Facebook",
        "type": "oauth2",
        "api_base_url": "https://graph.facebook.com/v19.0",
        "token_url": "https://graph.facebook.com/v19.0/oauth/access_token",
        "page_size": 100,
        "rate_limit": {
            "calls": 200,
            "window": 3600,  # 1 hour
        }
    },
}
