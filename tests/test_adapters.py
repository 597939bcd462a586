"""Tests for platform adapters."""

from datetime import datetime, timedelta
import time
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from ingestion.adapters import (
    AdapterRegistry,
    AuthError,
    FacebookAdapter,
    FatalError,
    LinkedInAdapter,
    RateLimitError,
    RedditAdapter,
    TransientError,
    TwitterAdapter,
)
from ingestion.models import PlatformCredentials


@pytest.fixture
def credentials():
    return PlatformCredentials(access_token="token", refresh_token="refresh", account_id="42")


def client_for(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def responding(status_code=200, json=None, headers=None, requests=None):
    def handler(request):
        if requests is not None:
            requests.append(request)
        return httpx.Response(status_code, json=json or {}, headers=headers)

    return handler


class TestRegistry:
    """Adapter lookup."""

    def test_registered_platforms(self):
        registry = AdapterRegistry.from_registered()

        assert set(registry.list_platforms()) >= {"twitter", "reddit", "linkedin", "facebook"}
        assert isinstance(registry.get("twitter"), TwitterAdapter)

    def test_unknown_platform_fails_fast(self):
        with pytest.raises(FatalError):
            AdapterRegistry.from_registered().get("discord")


class TestTwitterAdapter:
    """Mentions pull and status mapping."""

    @pytest.mark.asyncio
    async def test_sync_advances_since_id(self, credentials):
        requests = []
        adapter = TwitterAdapter(http_client=client_for(responding(
            json={"data": [{"id": "11"}, {"id": "10"}], "meta": {"newest_id": "11"}},
            requests=requests,
        )))

        result = await adapter.sync(credentials, "9")

        assert result.item_count == 2
        assert result.next_cursor == "11"
        request = requests[0]
        assert request.url.path == "/2/users/42/mentions"
        assert request.url.params["since_id"] == "9"
        assert request.headers["Authorization"] == "Bearer token"

    @pytest.mark.asyncio
    async def test_sync_follows_next_token(self, credentials):
        requests = []
        pages = {
            None: {"data": [{"id": "15"}, {"id": "14"}], "meta": {"newest_id": "15", "next_token": "p2"}},
            "p2": {"data": [{"id": "13"}, {"id": "12"}], "meta": {"newest_id": "13", "next_token": "p3"}},
            "p3": {"data": [{"id": "11"}], "meta": {"newest_id": "11"}},
        }

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=pages[request.url.params.get("pagination_token")])

        adapter = TwitterAdapter(http_client=client_for(handler))

        result = await adapter.sync(credentials, "10")

        assert [item["id"] for item in result.raw_items] == ["15", "14", "13", "12", "11"]
        assert result.next_cursor == "15"
        assert len(requests) == 3
        assert all(r.url.params["since_id"] == "10" for r in requests)

    @pytest.mark.asyncio
    async def test_empty_page_keeps_cursor(self, credentials):
        adapter = TwitterAdapter(http_client=client_for(responding(json={"meta": {"result_count": 0}})))

        result = await adapter.sync(credentials, "9")

        assert result.item_count == 0
        assert result.next_cursor == "9"

    @pytest.mark.asyncio
    async def test_missing_access_token(self):
        adapter = TwitterAdapter(http_client=client_for(responding()))

        with pytest.raises(AuthError):
            await adapter.sync(PlatformCredentials(account_id="42"), None)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error", [
        (401, AuthError),
        (403, AuthError),
        (400, FatalError),
        (404, FatalError),
        (500, TransientError),
        (503, TransientError),
    ])
    async def test_status_mapping(self, credentials, status, error):
        adapter = TwitterAdapter(http_client=client_for(responding(status_code=status)))

        with pytest.raises(error):
            await adapter.sync(credentials, None)

    @pytest.mark.asyncio
    async def test_rate_limit_resume_from_reset_header(self, credentials):
        reset = int(time.time()) + 300
        adapter = TwitterAdapter(http_client=client_for(responding(
            status_code=429, headers={"x-rate-limit-reset": str(reset)},
        )))

        with pytest.raises(RateLimitError) as exc_info:
            await adapter.sync(credentials, None)

        assert exc_info.value.resume_at == datetime.utcfromtimestamp(reset)

    @pytest.mark.asyncio
    async def test_rate_limit_resume_from_retry_after(self, credentials):
        adapter = TwitterAdapter(http_client=client_for(responding(status_code=429, headers={"retry-after": "120"})))

        with pytest.raises(RateLimitError) as exc_info:
            await adapter.sync(credentials, None)

        delay = (exc_info.value.resume_at - datetime.utcnow()).total_seconds()
        assert 110 <= delay <= 120

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self, credentials):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        adapter = TwitterAdapter(http_client=client_for(handler))

        with pytest.raises(TransientError) as exc_info:
            await adapter.sync(credentials, None)

        assert exc_info.value.timeout is False

    @pytest.mark.asyncio
    async def test_client_side_rate_limit(self, credentials):
        limiter = Mock()
        limiter.check_rate_limit = AsyncMock(return_value=False)
        limiter.seconds_until_available = AsyncMock(return_value=30.0)
        requests = []
        adapter = TwitterAdapter(http_client=client_for(responding(requests=requests)), rate_limiter=limiter)

        with pytest.raises(RateLimitError):
            await adapter.sync(credentials, None)

        assert requests == []
        limiter.check_rate_limit.assert_awaited_once_with("twitter:42", limit=180, window=900)

    @pytest.mark.asyncio
    async def test_refresh_access_token(self, credentials):
        requests = []
        adapter = TwitterAdapter(http_client=client_for(responding(
            json={"access_token": "new", "expires_in": 7200, "token_type": "bearer"},
            requests=requests,
        )))

        token = await adapter.refresh_access_token(credentials)

        assert token.access_token == "new"
        assert token.refresh_token == "refresh"
        assert token.expires_at > datetime.utcnow() + timedelta(hours=1)
        assert b"grant_type=refresh_token" in requests[0].content

    @pytest.mark.asyncio
    async def test_refresh_rejected(self, credentials):
        adapter = TwitterAdapter(http_client=client_for(responding(status_code=400, json={"error": "invalid_grant"})))

        with pytest.raises(AuthError):
            await adapter.refresh_access_token(credentials)


class TestCursorEncodings:
    """Each platform owns its cursor."""

    @pytest.mark.asyncio
    async def test_reddit_uses_newest_fullname(self, credentials):
        requests = []
        adapter = RedditAdapter(http_client=client_for(responding(
            json={"data": {"children": [{"data": {"name": "t1_b"}}, {"data": {"name": "t1_a"}}]}},
            requests=requests,
        )))

        result = await adapter.sync(credentials, "t1_0")

        assert result.next_cursor == "t1_b"
        assert requests[0].url.params["before"] == "t1_0"

    @pytest.mark.asyncio
    async def test_linkedin_offsets(self, credentials):
        adapter = LinkedInAdapter(http_client=client_for(responding(
            json={"elements": [{}, {}, {}], "paging": {"start": 50, "count": 50}},
        )))

        result = await adapter.sync(credentials, "50")

        assert result.item_count == 3
        assert result.next_cursor == "53"

    @pytest.mark.asyncio
    async def test_linkedin_malformed_cursor(self, credentials):
        adapter = LinkedInAdapter(http_client=client_for(responding()))

        with pytest.raises(FatalError):
            await adapter.sync(credentials, "not-a-number")

    @pytest.mark.asyncio
    async def test_facebook_cursor_is_newest_post_time(self, credentials):
        requests = []
        pages = {
            None: {
                "data": [
                    {"id": "3", "created_time": "2023-11-14T22:13:20+0000"},
                    {"id": "2", "created_time": "2023-11-14T22:10:00+0000"},
                ],
                "paging": {"cursors": {"after": "QVFI"}, "next": "https://graph.facebook.com/next"},
            },
            "QVFI": {
                "data": [
                    {"id": "1", "created_time": "2023-11-14T22:05:00+0000"},
                    {"id": "0", "created_time": "2023-11-14T22:00:00+0000"},
                ],
                "paging": {"cursors": {"after": "QVFJ"}},
            },
        }

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=pages[request.url.params.get("after")])

        adapter = FacebookAdapter(http_client=client_for(handler))

        result = await adapter.sync(credentials, "1699999200")

        assert [item["id"] for item in result.raw_items] == ["3", "2", "1"]
        assert result.next_cursor == "1700000000"
        assert [r.url.params["since"] for r in requests] == ["1699999200", "1699999200"]

    @pytest.mark.asyncio
    async def test_facebook_empty_pull_keeps_cursor(self, credentials):
        adapter = FacebookAdapter(http_client=client_for(responding(json={"data": []})))

        result = await adapter.sync(credentials, "1700000000")

        assert result.item_count == 0
        assert result.next_cursor == "1700000000"

    @pytest.mark.asyncio
    async def test_facebook_ignores_legacy_paging_cursor(self, credentials):
        requests = []
        adapter = FacebookAdapter(http_client=client_for(responding(
            json={"data": [{"id": "1", "created_time": "2023-11-14T22:13:20+0000"}]},
            requests=requests,
        )))

        result = await adapter.sync(credentials, "QVFI")

        assert "since" not in requests[0].url.params
        assert "after" not in requests[0].url.params
        assert result.next_cursor == "1700000000"

    @pytest.mark.asyncio
    async def test_missing_account_id_is_fatal(self):
        adapter = FacebookAdapter(http_client=client_for(responding()))

        with pytest.raises(FatalError):
            await adapter.sync(PlatformCredentials(access_token="token"), None)
