"""Domain models for task assignments."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .task import TaskResult, utc_now


class AssignmentStatus(str, Enum):
    """Execution state of an assignment."""
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class Assignment(BaseModel):
    """Join record binding a tracker task to the agent executing it."""
    task_id: str  # tracker task ID
    agent_id: str
    assigned_by: str = "auto"  # auto, tracker
    assigned_at: datetime = Field(default_factory=utc_now)
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    result: Optional[TaskResult] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def active(self) -> bool:
        return self.status in (AssignmentStatus.ASSIGNED, AssignmentStatus.IN_PROGRESS)
