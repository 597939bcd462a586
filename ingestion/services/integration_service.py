"""Integration persistence with atomic read-modify-write updates."""

from typing import List, Dict, Any, Optional, Iterable
from datetime import datetime
import logging
import uuid

from pydantic import BaseModel
from pymongo import ReturnDocument

from ingestion.core.database import Database, COLLECTIONS
from ingestion.models import Integration

logger = logging.getLogger(__name__)


class IntegrationService:
    """Reads and mutates Integration documents.

    Every mutation is one ``find_one_and_update`` so a webhook bumping
    ``last_sync_at`` and a sync completion touching counters never
    overwrite each other.
    """

    def __init__(self, db: Database):
        self.db = db

    @property
    def collection(self):
        return self.db.get_collection(COLLECTIONS["integrations"])

    async def create_integration(self, integration: Integration) -> Integration:
        """Create a new integration."""
        if not integration.id:
            integration.id = str(uuid.uuid4())

        await self.collection.insert_one(integration.model_dump(by_alias=True))
        logger.info(f"Created integration {integration.id} for platform {integration.platform_name}")

        return integration

    async def get_integration(self, integration_id: str) -> Optional[Integration]:
        """Get integration by ID."""
        doc = await self.collection.find_one({"_id": integration_id})
        return Integration(**doc) if doc else None

    async def list_integrations(
        self,
        filters: Dict[str, Any],
        skip: int = 0,
        limit: int = 100
    ) -> List[Integration]:
        """List integrations with filters."""
        cursor = self.collection.find(filters).skip(skip).limit(limit)
        integrations = []

        async for doc in cursor:
            integrations.append(Integration(**doc))

        return integrations

    async def update_integration(
        self,
        integration_id: str,
        set_fields: Optional[Dict[str, Any]] = None,
        inc_fields: Optional[Dict[str, int]] = None,
        expected_statuses: Optional[Iterable[str]] = None,
    ) -> Optional[Integration]:
        """Atomically apply an update, optionally guarded on current status.

        Returns the updated integration, or None when the document is
        missing or its status is not one of ``expected_statuses``.
        """
        query: Dict[str, Any] = {"_id": integration_id}
        if expected_statuses is not None:
            query["connection_status"] = {"$in": [getattr(s, "value", s) for s in expected_statuses]}

        update: Dict[str, Any] = {"$set": {"updated_at": datetime.utcnow()}}
        for key, value in (set_fields or {}).items():
            if isinstance(value, BaseModel):
                value = value.model_dump()
            update["$set"][key] = getattr(value, "value", value)
        if inc_fields:
            update["$inc"] = dict(inc_fields)

        doc = await self.collection.find_one_and_update(
            query,
            update,
            return_document=ReturnDocument.AFTER,
        )
        return Integration(**doc) if doc else None
