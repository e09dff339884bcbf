"""Domain models for tasks."""

from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Lifecycle state of a task."""
    PENDING = "pending"
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TASK_STATUSES


TERMINAL_TASK_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)


class TaskPriority(IntEnum):
    """Task priority levels."""
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    URGENT = 3


class TaskResult(BaseModel):
    """Result of task execution."""
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    artifacts: list[str] = []  # file paths, URLs, etc.
    duration_ms: int = 0
    timestamp: datetime = Field(default_factory=utc_now)


class Task(BaseModel):
    """
    A unit of work, created locally or mirrored from the tracker.

    Mirrored tasks carry ``external_id``/``source`` and keep the raw tracker
    status in ``external_status``; ``status`` is always the local lifecycle.
    """
    id: str = ""
    title: str
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    assigned_to: Optional[str] = None  # agent ID
    labels: list[str] = []
    project_id: Optional[str] = None
    external_id: Optional[str] = None  # ID in the tracker
    source: Optional[str] = None  # tracker name, e.g. linear, github, jira
    external_status: Optional[str] = None  # todo, in_progress, done, blocked
    result: Optional[TaskResult] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    meta: dict[str, str] = {}
