"""Transient sync result and scheduling models."""

from datetime import timedelta
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field


class SyncResult(BaseModel):
    """Outcome of one adapter pull."""
    item_count: int = Field(default=0, ge=0)
    next_cursor: Optional[str] = None
    raw_items: List[Dict[str, Any]] = Field(default_factory=list)


class NextRun(BaseModel):
    """A unit of work's request for exactly one follow-up enqueue."""
    task_name: str
    args: Dict[str, Any]
    delay: timedelta = timedelta(0)
    reason: str = ""

    @property
    def delay_seconds(self) -> float:
        return max(0.0, self.delay.total_seconds())
