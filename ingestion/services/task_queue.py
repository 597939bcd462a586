"""Durable task queue contract and its Redis implementation."""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import json
import logging
import time
import uuid

import redis.asyncio as redis
from pydantic import BaseModel, Field

from ingestion.core.config import get_settings
from ingestion.services.backoff import RetryPolicy

logger = logging.getLogger(__name__)
settings = get_settings()


class QueuedTask(BaseModel):
    """Serialized unit of work."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    attempt: int = 1
    enqueued_at: datetime = Field(default_factory=datetime.utcnow)
    last_error: Optional[str] = None


class TaskQueue(ABC):
    """What the engine needs from a durable queue."""

    @abstractmethod
    async def enqueue(
        self,
        task_name: str,
        args: Dict[str, Any],
        delay: Optional[timedelta] = None,
    ) -> str:
        """Schedule ``task_name`` after ``delay`` and return the task id."""
        pass


class RedisTaskQueue(TaskQueue):
    """Delayed task queue on a Redis sorted set scored by due time.

    Delivery is at-least-once: a task is claimed by removing it from the
    set, so only one worker wins each task.
    """

    def __init__(self, redis_client: redis.Redis, prefix: Optional[str] = None):
        self.redis = redis_client
        self.prefix = prefix or settings.task_queue_prefix
        self.queue_key = f"{self.prefix}:tasks"
        self.dead_letter_key = f"{self.prefix}:dead_letter"

    async def enqueue(
        self,
        task_name: str,
        args: Dict[str, Any],
        delay: Optional[timedelta] = None,
    ) -> str:
        task = QueuedTask(name=task_name, args=args)
        await self._push(task, delay)
        logger.info(
            f"Enqueued {task_name}",
            extra={"task": task_name, "task_id": task.id, "delay_seconds": delay.total_seconds() if delay else 0},
        )
        return task.id

    async def requeue(self, task: QueuedTask, delay: timedelta) -> None:
        """Put a claimed task back without spending an attempt."""
        await self._push(task, delay)

    async def claim_due(self, limit: int = 50) -> List[QueuedTask]:
        """Claim up to ``limit`` tasks whose due time has passed."""
        members = await self.redis.zrangebyscore(self.queue_key, 0, time.time(), start=0, num=limit)

        claimed = []
        for member in members:
            # Another worker may have claimed it between the read and here
            if await self.redis.zrem(self.queue_key, member):
                claimed.append(QueuedTask.model_validate_json(member))
        return claimed

    async def retry(self, task: QueuedTask, policy: RetryPolicy, error: BaseException) -> bool:
        """Re-enqueue per ``policy``; dead-letter once attempts are spent."""
        if policy.should_retry(task.attempt):
            delay = policy.delay_for(task.attempt)
            retried = task.model_copy(update={"attempt": task.attempt + 1, "last_error": str(error)})
            await self._push(retried, delay)
            logger.info(
                f"Retrying {task.name} in {delay.total_seconds():.0f}s (attempt {retried.attempt}/{policy.max_attempts})",
                extra={"task": task.name, "task_id": task.id, "policy": policy.name},
            )
            return True

        await self.dead_letter(task, error)
        return False

    async def dead_letter(self, task: QueuedTask, error: Any) -> None:
        record = task.model_dump(mode="json")
        record["error"] = str(error)
        record["failed_at"] = datetime.utcnow().isoformat()
        await self.redis.lpush(self.dead_letter_key, json.dumps(record))
        logger.warning(
            f"Task {task.name} moved to dead letter queue: {error}",
            extra={"task": task.name, "task_id": task.id},
        )

    async def pending_count(self) -> int:
        return await self.redis.zcard(self.queue_key)

    async def _push(self, task: QueuedTask, delay: Optional[timedelta]) -> None:
        due = time.time() + (max(delay.total_seconds(), 0.0) if delay else 0.0)
        await self.redis.zadd(self.queue_key, {task.model_dump_json(): due})
