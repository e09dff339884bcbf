"""Domain models shared by the registry, matcher and sync loop."""

from .agent import Agent, AgentConfig, AgentStats, AgentStatus, AgentType
from .assignment import Assignment, AssignmentStatus
from .task import (
    TERMINAL_TASK_STATUSES,
    Task,
    TaskPriority,
    TaskResult,
    TaskStatus,
    utc_now,
)

__all__ = [
    "Agent",
    "AgentConfig",
    "AgentStats",
    "AgentStatus",
    "AgentType",
    "Assignment",
    "AssignmentStatus",
    "TERMINAL_TASK_STATUSES",
    "Task",
    "TaskPriority",
    "TaskResult",
    "TaskStatus",
    "utc_now",
]
