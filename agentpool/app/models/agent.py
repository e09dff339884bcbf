"""Domain models for agents."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .task import utc_now


class AgentType(str, Enum):
    """Kind of work an agent is set up for."""
    CODER = "coder"
    REVIEWER = "reviewer"
    PLANNER = "planner"
    DOCUMENTER = "documenter"
    TESTER = "tester"
    GENERAL = "general"


class AgentStatus(str, Enum):
    """Current availability of an agent."""
    IDLE = "idle"
    WORKING = "working"
    PAUSED = "paused"
    ERROR = "error"
    OFFLINE = "offline"


class AgentConfig(BaseModel):
    """Agent-specific configuration."""
    timeout_seconds: int = 300
    auto_assign: bool = True


class AgentStats(BaseModel):
    """Agent performance counters."""
    tasks_completed: int = 0
    tasks_failed: int = 0
    total_time_ms: int = 0
    avg_time_ms: int = 0
    last_active: Optional[datetime] = None
    success_rate: float = 0.0


class Agent(BaseModel):
    """A worker able to execute tasks."""
    id: str = ""
    name: str
    type: AgentType = AgentType.GENERAL
    status: AgentStatus = AgentStatus.IDLE
    description: str = ""
    labels: list[str] = []  # exact-match routing tags
    capabilities: list[str] = []  # free-form skills used for keyword scoring
    load: int = Field(default=0, ge=0, le=100)  # lower is more available
    config: AgentConfig = Field(default_factory=AgentConfig)
    stats: AgentStats = Field(default_factory=AgentStats)
    current_task_id: Optional[str] = None  # set iff status is WORKING
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    meta: dict[str, str] = {}

    def handles(self, labels: list[str]) -> bool:
        """Whether this agent takes tasks with the given labels.

        An agent without labels accepts anything.
        """
        if not self.labels:
            return True
        return bool(set(self.labels) & set(labels))
