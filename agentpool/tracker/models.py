"""Wire models for the tracker API and their translation to domain tasks."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, field_validator

from agentpool.app.models import Task, TaskPriority, TaskStatus, utc_now

TRACKER_STATUS_MAP = {
    "todo": TaskStatus.PENDING,
    "in_progress": TaskStatus.IN_PROGRESS,
    "done": TaskStatus.COMPLETED,
    "blocked": TaskStatus.FAILED,
    "cancelled": TaskStatus.CANCELLED,
    "canceled": TaskStatus.CANCELLED,
}

TRACKER_PRIORITY_MAP = {
    "low": TaskPriority.LOW,
    "medium": TaskPriority.MEDIUM,
    "high": TaskPriority.HIGH,
    "critical": TaskPriority.URGENT,
    "urgent": TaskPriority.URGENT,
}


def status_from_tracker(status: Optional[str]) -> TaskStatus:
    """Map a tracker status onto the local lifecycle; unknown values are pending."""
    return TRACKER_STATUS_MAP.get((status or "").lower(), TaskStatus.PENDING)


class TrackerTask(BaseModel):
    """Task as returned by the tracker."""
    id: str
    title: str = ""
    description: Optional[str] = ""
    priority: Optional[str] = "medium"  # low, medium, high, critical
    status: Optional[str] = "todo"  # todo, in_progress, done, blocked
    assignee: Optional[str] = None
    labels: Optional[list[str]] = None
    metadata: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    due_date: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("assignee", mode="before")
    @classmethod
    def _blank_assignee(cls, value: Any) -> Any:
        return value or None

    def to_task(self, source: str) -> Task:
        """Translate into a domain Task mirrored from ``source``."""
        now = utc_now()
        meta = {k: str(v) for k, v in (self.metadata or {}).items()}
        if self.due_date is not None:
            meta["due_date"] = self.due_date.isoformat()
        return Task(
            title=self.title,
            description=self.description or "",
            priority=TRACKER_PRIORITY_MAP.get((self.priority or "").lower(), TaskPriority.MEDIUM),
            status=status_from_tracker(self.status),
            assigned_to=self.assignee,
            labels=list(self.labels or []),
            external_id=self.id,
            source=source,
            external_status=self.status,
            created_at=self.created_at or now,
            updated_at=self.updated_at or now,
            meta=meta,
        )


class TrackerAgent(BaseModel):
    """Agent as known to the tracker."""
    id: str
    name: str = ""
    type: str = ""
    capabilities: list[str] = []
    status: str = "active"  # active, busy, offline
    load: int = 0
    metadata: dict[str, Any] = {}
