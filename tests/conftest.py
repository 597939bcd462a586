"""Pytest configuration and fixtures for ingestion engine tests."""

import os

os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key")

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from ingestion.adapters import AdapterRegistry, BasePlatformAdapter
from ingestion.core.config import get_settings
from ingestion.core.database import Database
from ingestion.models import ConnectionStatus, Integration, PlatformCredentials, SyncResult
from ingestion.services import (
    ActivityLog,
    BackoffPolicy,
    CredentialStore,
    IntegrationService,
    IntegrationStateMachine,
    SyncScheduler,
    WebhookPipeline,
)


@pytest.fixture
def settings():
    return get_settings()


@pytest_asyncio.fixture
async def db():
    """In-memory Mongo with the engine's indexes."""
    database = Database()
    database.client = AsyncMongoMockClient()
    database.db = database.client["ingestion_test"]
    await database.ensure_indexes()
    return database


@pytest.fixture
def integrations(db):
    return IntegrationService(db)


@pytest.fixture
def activity_log(db):
    return ActivityLog(db)


@pytest.fixture
def backoff():
    return BackoffPolicy(max_error_count=3)


@pytest.fixture
def state_machine(integrations, activity_log, backoff):
    return IntegrationStateMachine(integrations, activity_log, backoff)


@pytest.fixture
def adapter():
    """Twitter-shaped adapter whose pulls are scripted per test."""
    adapter = Mock(spec=BasePlatformAdapter)
    adapter.sync = AsyncMock(return_value=SyncResult(item_count=5, next_cursor="c2"))
    adapter.refresh_access_token = AsyncMock()
    adapter.aclose = AsyncMock()
    return adapter


@pytest.fixture
def registry(adapter):
    return AdapterRegistry({"twitter": adapter})


@pytest.fixture
def credential_store(registry, state_machine):
    return CredentialStore(registry, state_machine)


@pytest.fixture
def notifier():
    notifier = Mock()
    notifier.notify_suspension = AsyncMock()
    return notifier


@pytest.fixture
def scheduler(integrations, state_machine, registry, credential_store, activity_log, notifier, backoff):
    return SyncScheduler(
        integrations,
        state_machine,
        registry,
        credential_store,
        activity_log,
        notifier,
        backoff,
    )


@pytest.fixture
def parser():
    parser = Mock()
    parser.parse = AsyncMock(return_value=2)
    return parser


@pytest.fixture
def webhook_queue():
    queue = Mock()
    queue.enqueue = AsyncMock()
    return queue


@pytest.fixture
def pipeline(db, integrations, state_machine, activity_log, parser, webhook_queue):
    return WebhookPipeline(db, integrations, state_machine, activity_log, parser, webhook_queue)


@pytest.fixture
def make_integration(integrations, credential_store):
    """Persist an integration; credentials are stored encrypted."""

    async def _make(**overrides) -> Integration:
        fields = {
            "user_id": "user-1",
            "platform_name": "twitter",
            "name": "Brand account",
            "connection_status": ConnectionStatus.CONNECTED.value,
            "sync_frequency": "hourly",
            "sync_cursor": "c1",
            "credentials": PlatformCredentials(
                access_token="access-1",
                refresh_token="refresh-1",
                account_id="42",
            ),
            "token_expires_at": datetime.utcnow() + timedelta(hours=2),
        }
        fields.update(overrides)
        fields["credentials"] = credential_store.encrypt(fields["credentials"])
        return await integrations.create_integration(Integration(**fields))

    return _make
