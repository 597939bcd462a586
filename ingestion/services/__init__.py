"""Engine services."""

from .activity_log import ActivityLog
from .backoff import BackoffPolicy, ErrorKind, RetryPolicy, SyncAction
from .credentials import CredentialStore
from .integration_service import IntegrationService
from .notifications import NotificationClient, SuspensionNotifier, SUSPENSION_NOTICE_TASK
from .record_parser import PayloadParser, RecordsServiceParser
from .state_machine import IntegrationStateMachine, ALLOWED_TRANSITIONS, SYNCABLE_STATUSES
from .sync_scheduler import SyncScheduler, SYNC_TASK
from .task_queue import QueuedTask, RedisTaskQueue, TaskQueue
from .webhook_pipeline import WebhookPipeline, WEBHOOK_TASK

__all__ = [
    "ActivityLog",
    "BackoffPolicy",
    "ErrorKind",
    "RetryPolicy",
    "SyncAction",
    "CredentialStore",
    "IntegrationService",
    "NotificationClient",
    "SuspensionNotifier",
    "SUSPENSION_NOTICE_TASK",
    "PayloadParser",
    "RecordsServiceParser",
    "IntegrationStateMachine",
    "ALLOWED_TRANSITIONS",
    "SYNCABLE_STATUSES",
    "SyncScheduler",
    "SYNC_TASK",
    "QueuedTask",
    "RedisTaskQueue",
    "TaskQueue",
    "WebhookPipeline",
    "WEBHOOK_TASK",
]
