"""Platform sync adapters."""

from .base import (
    BasePlatformAdapter,
    HttpPlatformAdapter,
    IntegrationError,
    AuthError,
    RateLimitError,
    TransientError,
    FatalError,
    InvalidTransitionError,
    IntegrationNotFoundError,
    WebhookRejectedError,
)
from .registry import AdapterRegistry
from .twitter import TwitterAdapter
from .linkedin import LinkedInAdapter
from .reddit import RedditAdapter
from .facebook import FacebookAdapter

__all__ = [
    "BasePlatformAdapter",
    "HttpPlatformAdapter",
    "IntegrationError",
    "AuthError",
    "RateLimitError",
    "TransientError",
    "FatalError",
    "InvalidTransitionError",
    "IntegrationNotFoundError",
    "WebhookRejectedError",
    "AdapterRegistry",
    "TwitterAdapter",
    "LinkedInAdapter",
    "RedditAdapter",
    "FacebookAdapter",
]
