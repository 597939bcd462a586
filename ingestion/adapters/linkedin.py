"""LinkedIn organization notifications adapter."""

from typing import Dict, Any, List, Optional, Tuple

from ingestion.adapters.base import HttpPlatformAdapter, FatalError
from ingestion.adapters.registry import AdapterRegistry
from ingestion.models import PlatformCredentials, PlatformName


@AdapterRegistry.register(PlatformName.LINKEDIN)
class LinkedInAdapter(HttpPlatformAdapter):
    """Pulls mention/comment notifications for an organization page.

    LinkedIn pages by offset, so the cursor is the next ``start`` index.
    """

    async def fetch_page(self, credentials: PlatformCredentials, cursor: Optional[str]) -> Dict[str, Any]:
        if not credentials.account_id:
            raise FatalError("LinkedIn integration has no organization id configured")

        try:
            start = int(cursor) if cursor else 0
        except ValueError:
            raise FatalError(f"Malformed LinkedIn cursor: {cursor!r}")

        response = await self.make_api_request(
            "GET",
            f"{self.api_base_url}/organizationalEntityNotifications",
            credentials,
            params={
                "q": "criteria",
                "organizationalEntity": f"urn:li:organization:{credentials.account_id}",
                "actions": "List(COMMENT,SHARE_MENTION)",
                "start": start,
                "count": self.page_size,
            },
            headers={
                "LinkedIn-Version": self.config["api_version"],
                "X-Restli-Protocol-Version": "2.0.0",
            },
        )
        return response.json()

    def parse_page(
        self, data: Dict[str, Any], cursor: Optional[str]
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        items = data.get("elements") or []
        paging = data.get("paging") or {}
        start = paging.get("start", int(cursor) if cursor else 0)
        if not items:
            return [], cursor
        return items, str(start + len(items))
