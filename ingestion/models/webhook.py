"""Webhook delivery models."""

from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field
from enum import Enum


class WebhookStatus(str, Enum):
    """Webhook delivery processing status."""
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class WebhookDelivery(BaseModel):
    """One inbound push notification and its processing state."""
    id: Optional[str] = Field(default=None, alias="_id")
    integration_id: str
    external_event_id: str
    platform: str
    event_type: Optional[str] = None
    payload: Any
    headers: Dict[str, str] = Field(default_factory=dict)

    status: WebhookStatus = WebhookStatus.PENDING.value
    failure_reason: Optional[str] = None
    attempts: int = 0
    retry_count: int = 0

    received_at: datetime = Field(default_factory=datetime.utcnow)
    processed_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
        use_enum_values = True
