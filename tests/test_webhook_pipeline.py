"""Tests for webhook receipt and processing."""

import asyncio
from datetime import timedelta

import pytest

from ingestion.adapters import (
    FatalError,
    IntegrationNotFoundError,
    TransientError,
    WebhookRejectedError,
)
from ingestion.models import ActivityType, SyncResult, WebhookStatus
from ingestion.services import WEBHOOK_TASK


@pytest.fixture
def receive(pipeline, make_integration):
    async def _receive(event_id="evt-1", **kwargs):
        integration = kwargs.pop("integration", None) or await make_integration()
        delivery = await pipeline.receive(
            integration.id,
            kwargs.pop("platform", "twitter"),
            kwargs.pop("payload", {"text": "hello @brand"}),
            event_id,
            event_type="mention",
            **kwargs,
        )
        return integration, delivery

    return _receive


class TestReceive:
    """Idempotent receipt."""

    @pytest.mark.asyncio
    async def test_duplicate_event_returns_same_delivery(self, pipeline, receive, activity_log, db):
        integration, first = await receive()
        second = await pipeline.receive(integration.id, "twitter", {"text": "retry"}, "evt-1")

        assert second.id == first.id
        assert second.payload == {"text": "hello @brand"}
        assert await db.get_collection("webhook_deliveries").count_documents({}) == 1

        entries = await activity_log.recent(integration.id)
        assert [e.activity_type for e in entries].count(ActivityType.WEBHOOK_RECEIVED.value) == 1

    @pytest.mark.asyncio
    async def test_first_receipt_schedules_processing_once(self, pipeline, receive, webhook_queue):
        integration, delivery = await receive()
        await pipeline.receive(integration.id, "twitter", {"text": "retry"}, "evt-1")

        webhook_queue.enqueue.assert_awaited_once_with(WEBHOOK_TASK, {"delivery_id": delivery.id})

    @pytest.mark.asyncio
    async def test_new_delivery_is_pending(self, receive):
        _, delivery = await receive(headers={"x-signature": "abc"})

        assert delivery.status == WebhookStatus.PENDING
        assert delivery.attempts == 0
        assert delivery.headers == {"x-signature": "abc"}

    @pytest.mark.asyncio
    async def test_platform_mismatch_rejected(self, receive):
        with pytest.raises(WebhookRejectedError):
            await receive(platform="reddit")

    @pytest.mark.asyncio
    async def test_missing_event_id_rejected(self, receive):
        with pytest.raises(WebhookRejectedError):
            await receive(event_id="")

    @pytest.mark.asyncio
    async def test_unknown_integration(self, pipeline):
        with pytest.raises(IntegrationNotFoundError):
            await pipeline.receive("missing", "twitter", {}, "evt-1")


class TestProcess:
    """Claiming and parsing deliveries."""

    @pytest.mark.asyncio
    async def test_success_marks_processed_and_touches_integration(
        self, pipeline, receive, parser, integrations
    ):
        integration, delivery = await receive()

        await pipeline.process(delivery.id)

        stored = await pipeline.get_delivery(delivery.id)
        assert stored.status == WebhookStatus.PROCESSED
        assert stored.attempts == 1
        assert stored.processed_at is not None
        parser.parse.assert_awaited_once()
        assert (await integrations.get_integration(integration.id)).last_sync_at is not None

    @pytest.mark.asyncio
    async def test_failure_marks_failed_and_reraises(self, pipeline, receive, parser):
        _, delivery = await receive()
        parser.parse.side_effect = FatalError("unparseable payload")

        with pytest.raises(FatalError):
            await pipeline.process(delivery.id)

        stored = await pipeline.get_delivery(delivery.id)
        assert stored.status == WebhookStatus.FAILED
        assert stored.failure_reason == "unparseable payload"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fail_first", [False, True])
    async def test_finished_deliveries_are_not_reprocessed(self, pipeline, receive, parser, fail_first):
        _, delivery = await receive()
        if fail_first:
            parser.parse.side_effect = TransientError("down")
            with pytest.raises(TransientError):
                await pipeline.process(delivery.id)
        else:
            await pipeline.process(delivery.id)
        status = (await pipeline.get_delivery(delivery.id)).status

        parser.parse.side_effect = None
        await pipeline.process(delivery.id)

        stored = await pipeline.get_delivery(delivery.id)
        assert stored.status == status
        assert stored.attempts == 1
        assert parser.parse.await_count == 1

    @pytest.mark.asyncio
    async def test_parse_timeout_is_timeout_class(self, pipeline, receive, parser, settings):
        _, delivery = await receive()
        pipeline.settings = settings.model_copy(update={"webhook_job_timeout": 0.01})

        async def hang(delivery, integration):
            await asyncio.sleep(1)

        parser.parse.side_effect = hang

        with pytest.raises(TransientError) as exc_info:
            await pipeline.process(delivery.id)

        assert exc_info.value.timeout is True
        assert (await pipeline.get_delivery(delivery.id)).status == WebhookStatus.FAILED

    @pytest.mark.asyncio
    async def test_concurrent_webhooks_and_sync_keep_all_updates(
        self, pipeline, make_integration, receive, state_machine, integrations
    ):
        integration = await make_integration(total_synced_items=0)
        deliveries = []
        for i in range(5):
            _, delivery = await receive(event_id=f"evt-{i}", integration=integration)
            deliveries.append(delivery)

        await asyncio.gather(
            *(pipeline.process(d.id) for d in deliveries),
            state_machine.record_success(integration.id, SyncResult(item_count=4, next_cursor="c5")),
        )

        stored = await integrations.get_integration(integration.id)
        assert stored.total_synced_items == 4
        assert stored.sync_cursor == "c5"
        for delivery in deliveries:
            assert (await pipeline.get_delivery(delivery.id)).status == WebhookStatus.PROCESSED


class TestRetry:
    """Explicit reset of failed deliveries."""

    @pytest.mark.asyncio
    async def test_retry_schedule(self, pipeline, receive, parser):
        _, delivery = await receive()
        parser.parse.side_effect = TransientError("down")

        delays = []
        for _ in range(3):
            with pytest.raises(TransientError):
                await pipeline.process(delivery.id)
            next_run = await pipeline.retry(delivery.id)
            assert next_run.task_name == WEBHOOK_TASK
            assert next_run.args == {"delivery_id": delivery.id}
            delays.append(next_run.delay)

        assert delays == [timedelta(seconds=60), timedelta(seconds=300), timedelta(seconds=900)]

        with pytest.raises(TransientError):
            await pipeline.process(delivery.id)
        assert await pipeline.retry(delivery.id) is None

        stored = await pipeline.get_delivery(delivery.id)
        assert stored.status == WebhookStatus.FAILED
        assert stored.retry_count == 3
        assert stored.attempts == 4

    @pytest.mark.asyncio
    async def test_retry_ignores_non_failed(self, pipeline, receive):
        _, delivery = await receive()

        assert await pipeline.retry(delivery.id) is None
        assert (await pipeline.get_delivery(delivery.id)).status == WebhookStatus.PENDING
