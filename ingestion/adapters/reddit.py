"""Reddit username-mention adapter."""

from typing import Dict, Any, List, Optional, Tuple

from ingestion.adapters.base import HttpPlatformAdapter
from ingestion.adapters.registry import AdapterRegistry
from ingestion.models import PlatformCredentials, PlatformName


@AdapterRegistry.register(PlatformName.REDDIT)
class RedditAdapter(HttpPlatformAdapter):
    """Pulls username mentions from the inbox.

    Reddit listings are newest-first; the cursor is the fullname of the
    newest mention seen and is passed as ``before``.
    """

    async def fetch_page(self, credentials: PlatformCredentials, cursor: Optional[str]) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": self.page_size, "raw_json": 1}
        if cursor:
            params["before"] = cursor

        response = await self.make_api_request(
            "GET",
            f"{self.api_base_url}/message/mentions",
            credentials,
            params=params,
            headers={"User-Agent": "social-ingestion-worker/1.0"},
        )
        return response.json()

    def parse_page(
        self, data: Dict[str, Any], cursor: Optional[str]
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        children = (data.get("data") or {}).get("children") or []
        items = [child.get("data", {}) for child in children]
        if not items:
            return [], cursor
        return items, items[0].get("name") or cursor
