"""Facebook page tags adapter."""

from datetime import datetime
from typing import Dict, Any, List, Optional, Tuple

from ingestion.adapters.base import HttpPlatformAdapter, FatalError
from ingestion.adapters.registry import AdapterRegistry
from ingestion.models import PlatformCredentials, PlatformName

GRAPH_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def _epoch(created_time: Optional[str]) -> Optional[int]:
    if not created_time:
        return None
    return int(datetime.strptime(created_time, GRAPH_TIME_FORMAT).timestamp())


def _since(cursor: Optional[str]) -> Optional[int]:
    # Paging cursors stored by older releases are not timestamps
    if cursor and cursor.isdigit():
        return int(cursor)
    return None


@AdapterRegistry.register(PlatformName.FACEBOOK)
class FacebookAdapter(HttpPlatformAdapter):
    """Pulls posts the page is tagged in.

    The cursor is the epoch second of the newest post already ingested.
    Graph ``after`` cursors page toward older posts, so they are only
    followed within one pull and never stored.
    """

    async def fetch_page(self, credentials: PlatformCredentials, cursor: Optional[str]) -> Dict[str, Any]:
        if not credentials.account_id:
            raise FatalError("Facebook integration has no page id configured")

        params: Dict[str, Any] = {
            "limit": self.page_size,
            "fields": "id,message,from,created_time,permalink_url",
        }
        since = _since(cursor)
        if since is not None:
            params["since"] = since

        items: List[Dict[str, Any]] = []
        while True:
            response = await self.make_api_request(
                "GET",
                f"{self.api_base_url}/{credentials.account_id}/tagged",
                credentials,
                params=params,
            )
            data = response.json()
            items.extend(data.get("data") or [])

            paging = data.get("paging") or {}
            after = (paging.get("cursors") or {}).get("after")
            if not paging.get("next") or not after:
                break
            params = {**params, "after": after}

        return {"data": items}

    def parse_page(
        self, data: Dict[str, Any], cursor: Optional[str]
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        since = _since(cursor)
        items = []
        newest = since
        for item in data.get("data") or []:
            created = _epoch(item.get("created_time"))
            if created is None:
                items.append(item)
                continue
            # ``since`` is inclusive on the Graph API
            if since is not None and created <= since:
                continue
            items.append(item)
            if newest is None or created > newest:
                newest = created

        if newest is None:
            return items, cursor
        return items, str(newest)
