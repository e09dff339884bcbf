"""Agent registry, matching and tracker synchronization."""

from agentpool.orchestrator.assignment_engine import AssignmentEngine, extract_keywords
from agentpool.orchestrator.executor import SimulatedExecutor, TaskExecutor
from agentpool.orchestrator.project_sync import ProjectSyncManager
from agentpool.orchestrator.registry import Registry, RegistryStats, default_agents

__all__ = [
    "AssignmentEngine",
    "ProjectSyncManager",
    "Registry",
    "RegistryStats",
    "SimulatedExecutor",
    "TaskExecutor",
    "default_agents",
    "extract_keywords",
]
