"""Database connections and utilities."""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING
from typing import Optional
import logging

from ingestion.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class Database:
    """Database connection manager."""

    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None

    async def connect(self):
        """Connect to MongoDB."""
        try:
            self.client = AsyncIOMotorClient(settings.mongodb_url)
            self.db = self.client[settings.mongodb_db_name]

            # Test connection
            await self.client.admin.command("ping")
            logger.info("Connected to MongoDB")
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

        await self.ensure_indexes()

    async def disconnect(self):
        """Disconnect from MongoDB."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    def get_collection(self, name: str):
        """Get a collection."""
        if self.db is None:
            raise RuntimeError("Database not connected")
        return self.db[name]

    async def ensure_indexes(self):
        """Create the indexes the engine relies on."""
        deliveries = self.get_collection(COLLECTIONS["webhook_deliveries"])
        # Idempotency key for inbound webhook events
        await deliveries.create_index(
            [("integration_id", ASCENDING), ("external_event_id", ASCENDING)],
            unique=True,
        )
        await deliveries.create_index([("status", ASCENDING)])

        logs = self.get_collection(COLLECTIONS["integration_logs"])
        await logs.create_index([("integration_id", ASCENDING), ("performed_at", ASCENDING)])

        integrations = self.get_collection(COLLECTIONS["integrations"])
        await integrations.create_index([("connection_status", ASCENDING), ("enabled", ASCENDING)])


# Global database instance
database = Database()


# Collection names
COLLECTIONS = {
    "integrations": "integrations",
    "webhook_deliveries": "webhook_deliveries",
    "integration_logs": "integration_logs",
}
