"""Append-only audit trail of integration activity."""

from datetime import datetime, timedelta
from typing import List, Optional
import logging
import uuid

from ingestion.core.database import Database, COLLECTIONS
from ingestion.models import ActivityLogEntry, ActivityType

logger = logging.getLogger(__name__)


class ActivityLog:
    """Best-effort writer for integration activity entries.

    A failed write is logged and dropped; it never fails the caller.
    """

    def __init__(self, db: Database):
        self.db = db

    @property
    def collection(self):
        return self.db.get_collection(COLLECTIONS["integration_logs"])

    async def log(
        self,
        integration_id: str,
        activity_type: ActivityType,
        details: Optional[str] = None,
    ) -> None:
        try:
            entry = ActivityLogEntry(
                id=str(uuid.uuid4()),
                integration_id=integration_id,
                activity_type=activity_type,
                details=details,
            )
            await self.collection.insert_one(entry.model_dump(by_alias=True))
        except Exception as e:
            logger.error(
                f"Failed to log activity: {e}",
                extra={"integration_id": integration_id, "activity_type": str(activity_type)},
            )

    async def recent(self, integration_id: str, limit: int = 50) -> List[ActivityLogEntry]:
        """Most recent entries for an integration, newest first."""
        cursor = (
            self.collection.find({"integration_id": integration_id})
            .sort("performed_at", -1)
            .limit(limit)
        )
        return [ActivityLogEntry(**doc) async for doc in cursor]

    async def cleanup(self, days_to_keep: int = 30) -> int:
        """Delete entries older than ``days_to_keep``."""
        cutoff = datetime.utcnow() - timedelta(days=days_to_keep)
        result = await self.collection.delete_many({"performed_at": {"$lt": cutoff}})
        if result.deleted_count:
            logger.info(f"Removed {result.deleted_count} activity log entries older than {days_to_keep} days")
        return result.deleted_count
