"""Twitter mentions adapter."""

from typing import Dict, Any, List, Optional, Tuple

from ingestion.adapters.base import HttpPlatformAdapter, FatalError
from ingestion.adapters.registry import AdapterRegistry
from ingestion.models import PlatformCredentials, PlatformName


@AdapterRegistry.register(PlatformName.TWITTER)
class TwitterAdapter(HttpPlatformAdapter):
    """Pulls mentions of the connected account.

    The cursor is the newest tweet id already ingested (``since_id``).
    Results come newest first, so every ``next_token`` page is followed
    before the cursor moves.
    """

    async def fetch_page(self, credentials: PlatformCredentials, cursor: Optional[str]) -> Dict[str, Any]:
        if not credentials.account_id:
            raise FatalError("Twitter integration has no account id configured")

        params: Dict[str, Any] = {
            "max_results": self.page_size,
            "tweet.fields": "author_id,created_at,conversation_id,lang",
        }
        if cursor:
            params["since_id"] = cursor

        items: List[Dict[str, Any]] = []
        newest_id = None
        while True:
            response = await self.make_api_request(
                "GET",
                f"{self.api_base_url}/users/{credentials.account_id}/mentions",
                credentials,
                params=params,
            )
            data = response.json()
            meta = data.get("meta") or {}
            items.extend(data.get("data") or [])
            if newest_id is None:
                newest_id = meta.get("newest_id")

            next_token = meta.get("next_token")
            if not next_token:
                break
            params = {**params, "pagination_token": next_token}

        return {"data": items, "meta": {"newest_id": newest_id}}

    def parse_page(
        self, data: Dict[str, Any], cursor: Optional[str]
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        items = data.get("data") or []
        newest_id = (data.get("meta") or {}).get("newest_id")
        return items, newest_id or cursor
