"""Base platform adapter and the engine's error taxonomy."""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Tuple
from datetime import datetime, timedelta
import logging
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
import httpx

from ingestion.models import OAuthToken, PlatformCredentials, SyncResult
from ingestion.core.config import get_settings, PLATFORM_CONFIGS
from ingestion.utils.rate_limiter import RateLimiter


logger = logging.getLogger(__name__)
settings = get_settings()


class IntegrationError(Exception):
    """Base integration error."""
    pass


class AuthError(IntegrationError):
    """Credentials are invalid or expired."""
    pass


class RateLimitError(IntegrationError):
    """Platform asked us to back off until ``resume_at``."""

    def __init__(self, message: str, resume_at: datetime):
        super().__init__(message)
        self.resume_at = resume_at


class TransientError(IntegrationError):
    """Network failure or 5xx; safe to retry."""

    def __init__(self, message: str, timeout: bool = False):
        super().__init__(message)
        self.timeout = timeout


class FatalError(IntegrationError):
    """Malformed configuration; retrying will not help."""
    pass


class InvalidTransitionError(IntegrationError):
    """Connection or delivery state change not allowed from the current state."""

    def __init__(self, record_id: str, current: Optional[str], target: str):
        super().__init__(f"Cannot move {record_id} from {current} to {target}")
        self.record_id = record_id
        self.current = current
        self.target = target


class IntegrationNotFoundError(IntegrationError):
    """Integration record does not exist."""
    pass


class WebhookRejectedError(IntegrationError):
    """Inbound webhook is not eligible for ingestion."""
    pass


class BasePlatformAdapter(ABC):
    """Uniform pull contract every platform implements."""

    platform: str = ""

    @abstractmethod
    async def sync(self, credentials: PlatformCredentials, cursor: Optional[str]) -> SyncResult:
        """Pull everything newer than ``cursor``.

        Must raise AuthError, RateLimitError, TransientError or FatalError.
        Items behind an already-advanced cursor are never reported twice.
        """
        pass

    async def refresh_access_token(self, credentials: PlatformCredentials) -> OAuthToken:
        """Refresh the access token."""
        raise AuthError(f"{self.platform} does not support token refresh")

    async def aclose(self) -> None:
        pass


class HttpPlatformAdapter(BasePlatformAdapter):
    """Adapter base for platforms reached over their REST API."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.config = PLATFORM_CONFIGS[self.platform]
        self.api_base_url = self.config["api_base_url"]
        self.page_size = self.config.get("page_size", 100)
        # Request timeout stays below the job timeout so timeouts classify here
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.request_timeout)
        self.rate_limiter = rate_limiter

    async def aclose(self) -> None:
        await self.http_client.aclose()

    # Per-platform pagination

    @abstractmethod
    async def fetch_page(self, credentials: PlatformCredentials, cursor: Optional[str]) -> Dict[str, Any]:
        """Fetch one page of activity newer than ``cursor``."""
        pass

    @abstractmethod
    def parse_page(
        self, data: Dict[str, Any], cursor: Optional[str]
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Return the page's items and the cursor to resume from."""
        pass

    async def sync(self, credentials: PlatformCredentials, cursor: Optional[str]) -> SyncResult:
        if not credentials.access_token:
            raise AuthError(f"Missing access token for {self.platform}")

        data = await self.fetch_page(credentials, cursor)
        items, next_cursor = self.parse_page(data, cursor)

        logger.debug(
            f"Fetched {len(items)} items from {self.platform}",
            extra={"platform": self.platform, "cursor": cursor, "next_cursor": next_cursor},
        )
        return SyncResult(item_count=len(items), next_cursor=next_cursor, raw_items=items)

    async def refresh_access_token(self, credentials: PlatformCredentials) -> OAuthToken:
        """Exchange the refresh token at the platform's token endpoint."""
        if not credentials.refresh_token:
            raise AuthError("No refresh token available")

        data = {
            "grant_type": "refresh_token",
            "refresh_token": credentials.refresh_token,
            "client_id": getattr(settings, f"{self.platform}_client_id", None),
            "client_secret": getattr(settings, f"{self.platform}_client_secret", None),
        }

        try:
            response = await self.http_client.post(
                self.config["token_url"],
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.TimeoutException as e:
            raise TransientError(f"Token refresh timed out: {e}", timeout=True)
        except httpx.TransportError as e:
            raise TransientError(f"Token refresh failed: {e}")

        if response.status_code != 200:
            raise AuthError(f"Token refresh failed: {response.text}")

        token_data = response.json()

        expires_at = None
        if "expires_in" in token_data:
            expires_at = datetime.utcnow() + timedelta(seconds=int(token_data["expires_in"]))

        return OAuthToken(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token", credentials.refresh_token),
            token_type=token_data.get("token_type", "Bearer"),
            expires_at=expires_at,
            scope=token_data.get("scope"),
        )

    # Common utility methods

    async def make_api_request(
        self,
        method: str,
        url: str,
        credentials: PlatformCredentials,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Make API request with rate limiting, retries and error classification."""
        await self._check_rate_limit(credentials)

        request_headers = dict(headers or {})
        if credentials.access_token:
            request_headers["Authorization"] = f"{credentials.token_type} {credentials.access_token}"

        try:
            response = await self._send(method, url, headers=request_headers, params=params)
        except httpx.TimeoutException as e:
            raise TransientError(f"Request to {self.platform} timed out: {e}", timeout=True)
        except httpx.TransportError as e:
            raise TransientError(f"Network error talking to {self.platform}: {e}")

        self.raise_for_status(response)
        return response

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=retry_if_exception_type(httpx.TimeoutException),
        reraise=True,
    )
    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        return await self.http_client.request(method, url, **kwargs)

    def raise_for_status(self, response: httpx.Response) -> None:
        """Map an HTTP error status onto the error taxonomy."""
        status = response.status_code
        if status < 400:
            return

        if status == 429:
            raise RateLimitError(
                f"{self.platform} rate limit exceeded",
                resume_at=self.parse_resume_at(response),
            )
        elif status in (401, 403):
            raise AuthError(f"{self.platform} rejected credentials ({status})")
        elif status >= 500:
            raise TransientError(f"{self.platform} returned {status}")
        else:
            raise FatalError(f"{self.platform} rejected request ({status}): {response.text[:200]}")

    def parse_resume_at(self, response: httpx.Response) -> datetime:
        """Work out when a rate-limited platform accepts calls again."""
        now = datetime.utcnow()

        retry_after = response.headers.get("retry-after")
        if retry_after:
            try:
                return now + timedelta(seconds=float(retry_after))
            except ValueError:
                pass

        # Epoch seconds
        reset_epoch = response.headers.get("x-rate-limit-reset")
        if reset_epoch and reset_epoch.isdigit():
            return datetime.utcfromtimestamp(int(reset_epoch))

        # Seconds remaining
        reset_in = response.headers.get("x-ratelimit-reset")
        if reset_in:
            try:
                return now + timedelta(seconds=float(reset_in))
            except ValueError:
                pass

        return now + timedelta(seconds=settings.rate_limit_window_seconds)

    async def _check_rate_limit(self, credentials: PlatformCredentials) -> None:
        if self.rate_limiter is None:
            return

        limits = self.config["rate_limit"]
        key = f"{self.platform}:{credentials.account_id or 'default'}"
        if not await self.rate_limiter.check_rate_limit(key, limit=limits["calls"], window=limits["window"]):
            wait = await self.rate_limiter.seconds_until_available(key, window=limits["window"])
            raise RateLimitError(
                f"Client-side rate limit reached for {key}",
                resume_at=datetime.utcnow() + timedelta(seconds=wait),
            )
