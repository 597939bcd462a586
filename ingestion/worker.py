"""Background worker: pulls due tasks from Redis and runs their handlers."""

import asyncio
import signal
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional, Set, Tuple
import logging
import uuid

import redis.asyncio as redis

from ingestion.adapters import AdapterRegistry
from ingestion.core.config import Settings, get_settings
from ingestion.core.database import database
from ingestion.models import NextRun
from ingestion.services import (
    ActivityLog,
    BackoffPolicy,
    CredentialStore,
    IntegrationService,
    IntegrationStateMachine,
    NotificationClient,
    RecordsServiceParser,
    RedisTaskQueue,
    SuspensionNotifier,
    SyncScheduler,
    WebhookPipeline,
    QueuedTask,
    SYNC_TASK,
    WEBHOOK_TASK,
    SUSPENSION_NOTICE_TASK,
)
from ingestion.utils.logging import setup_logging
from ingestion.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

TaskHandler = Callable[..., Awaitable[Optional[NextRun]]]
FailureHandler = Callable[[QueuedTask, Exception], Awaitable[Optional[NextRun]]]


class TaskRegistration(NamedTuple):
    handler: TaskHandler
    lock_arg: Optional[str] = None
    on_failure: Optional[FailureHandler] = None


class Worker:
    """Runs queued units of work with bounded concurrency.

    A handler returns an optional ``NextRun`` which the worker enqueues.
    When a handler raises, the task is retried by the queue under the
    policy the error maps to, unless the task registered its own
    ``on_failure`` hook.
    """

    def __init__(
        self,
        queue: RedisTaskQueue,
        redis_client: redis.Redis,
        backoff: Optional[BackoffPolicy] = None,
        settings: Optional[Settings] = None,
    ):
        self.queue = queue
        self.redis = redis_client
        self.settings = settings or get_settings()
        self.backoff = backoff or BackoffPolicy(self.settings)
        self.worker_id = str(uuid.uuid4())

        self._handlers: Dict[str, TaskRegistration] = {}
        self._periodic: List[Tuple[str, Callable[[], Awaitable[Any]]]] = []
        self._in_flight: Set[asyncio.Task] = set()
        self._running = False

    def register(
        self,
        task_name: str,
        handler: TaskHandler,
        lock_arg: Optional[str] = None,
        on_failure: Optional[FailureHandler] = None,
    ) -> None:
        """Register ``handler`` for ``task_name``.

        ``lock_arg`` names the task argument whose value is locked for the
        duration of the handler, so at most one task per value runs.
        """
        self._handlers[task_name] = TaskRegistration(handler, lock_arg, on_failure)

    def register_periodic(self, name: str, func: Callable[[], Awaitable[Any]]) -> None:
        """Run ``func`` once per sweep interval across all workers."""
        self._periodic.append((name, func))

    def stop(self) -> None:
        logger.info("Stopping worker", extra={"worker_id": self.worker_id})
        self._running = False

    async def run(self) -> None:
        self._running = True
        logger.info(
            f"Worker started with concurrency {self.settings.worker_concurrency}",
            extra={"worker_id": self.worker_id, "tasks": list(self._handlers)},
        )
        maintenance = asyncio.create_task(self._maintenance_loop())

        try:
            while self._running:
                free = self.settings.worker_concurrency - len(self._in_flight)
                claimed = []
                if free > 0:
                    claimed = await self.queue.claim_due(limit=min(free, self.settings.worker_batch_size))

                for task in claimed:
                    in_flight = asyncio.create_task(self._dispatch(task))
                    self._in_flight.add(in_flight)
                    in_flight.add_done_callback(self._in_flight.discard)

                if not claimed:
                    await asyncio.sleep(self.settings.worker_poll_interval)
        finally:
            maintenance.cancel()
            await asyncio.gather(maintenance, *self._in_flight, return_exceptions=True)
            logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def execute(self, task: QueuedTask) -> None:
        """Run one claimed task to completion."""
        registration = self._handlers.get(task.name)
        if registration is None:
            await self.queue.dead_letter(task, f"No handler registered for task {task.name}")
            return

        lock_key = None
        if registration.lock_arg:
            lock_key = f"{self.queue.prefix}:lock:{task.name}:{task.args.get(registration.lock_arg)}"

        async with self._lock(lock_key) as acquired:
            if not acquired:
                logger.debug(f"{lock_key} is busy; requeueing task {task.id}")
                await self.queue.requeue(task, timedelta(seconds=self.settings.lock_busy_delay))
                return

            await self._run_handler(task, registration)

    async def run_periodic(self) -> None:
        """Run each periodic job whose interval lock this worker wins."""
        for name, func in self._periodic:
            key = f"{self.queue.prefix}:periodic:{name}"
            # Left to expire so the job runs at most once per interval
            acquired = await self.redis.set(
                key, self.worker_id, nx=True, ex=self.settings.sweep_interval_seconds
            )
            if not acquired:
                continue
            try:
                await func()
            except Exception as e:
                logger.error(f"Periodic job {name} failed: {e}", extra={"job": name})

    async def _run_handler(self, task: QueuedTask, registration: TaskRegistration) -> None:
        try:
            next_run = await registration.handler(**task.args)
        except Exception as e:
            logger.error(
                f"Task {task.name} failed on attempt {task.attempt}: {e}",
                extra={"task": task.name, "task_id": task.id, "error_type": e.__class__.__name__},
            )
            if registration.on_failure is None:
                await self.queue.retry(task, self.backoff.retry_policy_for(e), e)
                return
            next_run = await registration.on_failure(task, e)

        if next_run is not None:
            await self.queue.enqueue(next_run.task_name, next_run.args, next_run.delay)

    async def _dispatch(self, task: QueuedTask) -> None:
        try:
            await self.execute(task)
        except Exception as e:
            logger.exception(
                f"Unhandled error executing task {task.name}: {e}",
                extra={"task": task.name, "task_id": task.id},
            )

    async def _maintenance_loop(self) -> None:
        while self._running:
            try:
                await self.run_periodic()
            except Exception as e:
                logger.error(f"Maintenance pass failed: {e}")
            await asyncio.sleep(self.settings.sweep_interval_seconds)

    @asynccontextmanager
    async def _lock(self, key: Optional[str]):
        if key is None:
            yield True
            return

        token = str(uuid.uuid4())
        acquired = await self.redis.set(key, token, nx=True, ex=int(self.settings.lock_timeout))
        if not acquired:
            yield False
            return

        try:
            yield True
        finally:
            # Release only if the lock has not expired into another owner's hands
            if await self.redis.get(key) == token:
                await self.redis.delete(key)


async def main() -> None:
    setup_logging()
    settings = get_settings()
    logger.info(f"Starting {settings.service_name} ({settings.environment})")

    await database.connect()
    redis_client = redis.from_url(settings.redis_url, decode_responses=True)

    queue = RedisTaskQueue(redis_client)
    registry = AdapterRegistry.from_registered(rate_limiter=RateLimiter(redis_client=redis_client))
    backoff = BackoffPolicy(settings)
    activity_log = ActivityLog(database)
    integrations = IntegrationService(database)
    state_machine = IntegrationStateMachine(integrations, activity_log, backoff)
    credentials = CredentialStore(registry, state_machine, settings)
    scheduler = SyncScheduler(
        integrations,
        state_machine,
        registry,
        credentials,
        activity_log,
        SuspensionNotifier(queue),
        backoff,
        settings,
    )
    parser = RecordsServiceParser(settings=settings)
    pipeline = WebhookPipeline(database, integrations, state_machine, activity_log, parser, queue, settings)
    notifications = NotificationClient(settings=settings)

    async def retry_webhook(task: QueuedTask, error: Exception) -> Optional[NextRun]:
        return await pipeline.retry(task.args["delivery_id"])

    async def sweep_overdue() -> None:
        await scheduler.enqueue_overdue(queue)

    async def cleanup_activity_log() -> None:
        await activity_log.cleanup(settings.activity_log_retention_days)

    worker = Worker(queue, redis_client, backoff, settings)
    worker.register(SYNC_TASK, scheduler.run, lock_arg="integration_id")
    worker.register(WEBHOOK_TASK, pipeline.process, lock_arg="delivery_id", on_failure=retry_webhook)
    worker.register(SUSPENSION_NOTICE_TASK, notifications.send_suspension_notice)
    worker.register_periodic("sweep_overdue", sweep_overdue)
    worker.register_periodic("cleanup_activity_log", cleanup_activity_log)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.run()
    finally:
        await registry.aclose()
        await parser.aclose()
        await notifications.aclose()
        await redis_client.aclose()
        await database.disconnect()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
