"""In-memory registry of agents and tasks."""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from agentpool.app.models import (
    Agent,
    AgentConfig,
    AgentStatus,
    AgentType,
    Task,
    TaskResult,
    TaskStatus,
    utc_now,
)
from agentpool.errors import (
    AgentBusyError,
    AgentNotFoundError,
    TaskNotFoundError,
    TaskStateError,
)
from agentpool.locking import ReadWriteLock

logger = logging.getLogger(__name__)


class RegistryStats(BaseModel):
    """Point-in-time counts over the registry."""
    total_agents: int = 0
    active_agents: int = 0
    idle_agents: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0


class Registry:
    """
    Canonical store of agents and tasks used for internal assignment.

    Every method validates and applies its transition inside one critical
    section. Records handed out are copies; the maps are only mutated here.
    """

    def __init__(self):
        """Initialize empty registry."""
        self._agents: dict[str, Agent] = {}
        self._tasks: dict[str, Task] = {}
        self._lock = ReadWriteLock("registry")

    # Agents

    def register_agent(self, agent: Agent) -> Agent:
        """
        Add an agent to the registry.

        Assigns an ID if absent and resets the agent to idle.

        Args:
            agent: Agent to register

        Returns:
            Copy of the stored agent
        """
        now = utc_now()
        stored = agent.model_copy(deep=True)
        if not stored.id:
            stored.id = str(uuid.uuid4())
        stored.status = AgentStatus.IDLE
        stored.current_task_id = None
        stored.created_at = now
        stored.updated_at = now

        with self._lock.write():
            if stored.id in self._agents:
                logger.warning(f"Agent {stored.id} already registered, replacing")
            self._agents[stored.id] = stored

        logger.info(f"Registered {stored.type.value} agent {stored.name} ({stored.id})")
        return stored.model_copy(deep=True)

    def create_agent(
        self,
        name: str,
        agent_type: AgentType | str = AgentType.GENERAL,
        config: Optional[dict[str, Any]] = None,
        **fields: Any
    ) -> Agent:
        """
        Build an agent with default configuration and register it.

        Args:
            name: Display name
            agent_type: Agent type
            config: Overrides for AgentConfig fields (e.g. {"auto_assign": False})
            **fields: Other Agent fields (labels, capabilities, load, ...)

        Returns:
            The registered agent
        """
        agent_type = AgentType(agent_type)
        agent = Agent(
            name=name,
            type=agent_type,
            description=fields.pop("description", f"Agent of type {agent_type.value}"),
            config=AgentConfig(**(config or {})),
            **fields
        )
        return self.register_agent(agent)

    def delete_agent(self, agent_id: str) -> None:
        """Remove an agent. Raises AgentNotFoundError if unknown."""
        with self._lock.write():
            if agent_id not in self._agents:
                raise AgentNotFoundError(agent_id)
            del self._agents[agent_id]
        logger.info(f"Deleted agent {agent_id}")

    def get_agent(self, agent_id: str) -> Agent:
        """Return a copy of an agent. Raises AgentNotFoundError if unknown."""
        with self._lock.read():
            agent = self._agents.get(agent_id)
            if agent is None:
                raise AgentNotFoundError(agent_id)
            return agent.model_copy(deep=True)

    def list_agents(self) -> list[Agent]:
        """All agents in registration order."""
        with self._lock.read():
            return [a.model_copy(deep=True) for a in self._agents.values()]

    def get_agents_by_type(self, agent_type: AgentType | str) -> list[Agent]:
        agent_type = AgentType(agent_type)
        with self._lock.read():
            return [
                a.model_copy(deep=True)
                for a in self._agents.values()
                if a.type == agent_type
            ]

    def get_idle_agents(self) -> list[Agent]:
        with self._lock.read():
            return [
                a.model_copy(deep=True)
                for a in self._agents.values()
                if a.status == AgentStatus.IDLE
            ]

    def start_agent(self, agent_id: str) -> Agent:
        """
        Bring an agent online.

        A working agent keeps working; any other status becomes idle.

        Raises:
            AgentNotFoundError: If the agent is unknown
        """
        with self._lock.write():
            agent = self._require_agent(agent_id)
            if agent.status != AgentStatus.WORKING:
                agent.status = AgentStatus.IDLE
            agent.updated_at = utc_now()
            started = agent.model_copy(deep=True)
        logger.info(f"Agent {agent_id} started ({started.status.value})")
        return started

    def stop_agent(self, agent_id: str) -> Agent:
        """
        Take an agent offline and drop its current task reference.

        The task itself is left as is; completing it later still credits
        the agent's stats.

        Raises:
            AgentNotFoundError: If the agent is unknown
        """
        with self._lock.write():
            agent = self._require_agent(agent_id)
            if agent.current_task_id:
                logger.warning(
                    f"Stopping agent {agent_id} while it holds task {agent.current_task_id}"
                )
            agent.status = AgentStatus.OFFLINE
            agent.current_task_id = None
            agent.updated_at = utc_now()
            stopped = agent.model_copy(deep=True)
        logger.info(f"Agent {agent_id} stopped")
        return stopped

    # Tasks

    def create_task(self, task: Task) -> Task:
        """
        Store a new pending task.

        Args:
            task: Task to create; an ID is assigned if absent

        Returns:
            Copy of the stored task
        """
        now = utc_now()
        stored = task.model_copy(deep=True)
        if not stored.id:
            stored.id = str(uuid.uuid4())
        stored.status = TaskStatus.PENDING
        stored.created_at = now
        stored.updated_at = now

        with self._lock.write():
            self._tasks[stored.id] = stored

        logger.info(f"Created task {stored.id}: {stored.title}")
        return stored.model_copy(deep=True)

    def get_task(self, task_id: str) -> Task:
        """Return a copy of a task. Raises TaskNotFoundError if unknown."""
        with self._lock.read():
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            return task.model_copy(deep=True)

    def list_tasks(self, status: Optional[TaskStatus] = None) -> list[Task]:
        """All tasks in creation order, optionally filtered by status."""
        with self._lock.read():
            return [
                t.model_copy(deep=True)
                for t in self._tasks.values()
                if status is None or t.status == status
            ]

    def get_pending_tasks(self) -> list[Task]:
        """Tasks not yet picked up by an agent (pending or queued)."""
        with self._lock.read():
            return [
                t.model_copy(deep=True)
                for t in self._tasks.values()
                if t.status in (TaskStatus.PENDING, TaskStatus.QUEUED)
            ]

    def assign_task(self, task_id: str, agent_id: str) -> Task:
        """
        Assign a task to an idle agent and start it.

        The availability check and the claim happen under one exclusive
        hold, so of several callers racing for the same idle agent exactly
        one succeeds. A queued task is started by assigning it to the agent
        that already holds it.

        Args:
            task_id: Task to assign
            agent_id: Agent to run it

        Returns:
            The task, now in progress

        Raises:
            TaskNotFoundError: If the task is unknown
            AgentNotFoundError: If the agent is unknown
            TaskStateError: If the task is finished or held by another agent
            AgentBusyError: If the agent is not idle
        """
        with self._lock.write():
            task = self._require_task(task_id)
            agent = self._require_agent(agent_id)
            now = utc_now()

            if task.status.is_terminal:
                raise TaskStateError(f"task {task_id} is already {task.status.value}")

            holds_task = task.assigned_to == agent_id and agent.current_task_id == task_id
            if holds_task and task.status == TaskStatus.QUEUED:
                task.status = TaskStatus.IN_PROGRESS
                task.started_at = now
                task.updated_at = now
                logger.info(f"Started queued task {task_id} on agent {agent_id}")
                return task.model_copy(deep=True)

            if agent.status != AgentStatus.IDLE:
                raise AgentBusyError(agent_id)

            if task.assigned_to and task.status in (TaskStatus.QUEUED, TaskStatus.IN_PROGRESS):
                raise TaskStateError(
                    f"task {task_id} is already assigned to agent {task.assigned_to}"
                )

            task.assigned_to = agent_id
            task.status = TaskStatus.IN_PROGRESS
            task.started_at = now
            task.updated_at = now

            agent.status = AgentStatus.WORKING
            agent.current_task_id = task_id
            agent.updated_at = now
            assigned = task.model_copy(deep=True)

        logger.info(f"Assigned task {task_id} to agent {agent_id}")
        return assigned

    def complete_task(self, task_id: str, result: Optional[TaskResult] = None) -> Task:
        """
        Mark a task completed and credit its agent.

        Completing a task that already reached a terminal state changes
        nothing, so repeated calls never double-count statistics.

        Args:
            task_id: Task to complete
            result: Execution result; a successful empty result is recorded if None

        Returns:
            The task after the call

        Raises:
            TaskNotFoundError: If the task is unknown
        """
        if result is None:
            result = TaskResult(success=True)
        return self._finish_task(task_id, TaskStatus.COMPLETED, result)

    def fail_task(self, task_id: str, error: str, duration_ms: int = 0) -> Task:
        """
        Mark a task failed and count the failure against its agent.

        Raises:
            TaskNotFoundError: If the task is unknown
        """
        result = TaskResult(success=False, error=error, duration_ms=duration_ms)
        return self._finish_task(task_id, TaskStatus.FAILED, result)

    def cancel_task(self, task_id: str) -> Task:
        """
        Cancel a task and free its agent without touching stats.

        Raises:
            TaskNotFoundError: If the task is unknown
        """
        return self._finish_task(task_id, TaskStatus.CANCELLED, None)

    def _finish_task(
        self,
        task_id: str,
        status: TaskStatus,
        result: Optional[TaskResult]
    ) -> Task:
        with self._lock.write():
            task = self._require_task(task_id)
            if task.status.is_terminal:
                logger.warning(
                    f"Task {task_id} already {task.status.value}, ignoring {status.value}"
                )
                return task.model_copy(deep=True)

            now = utc_now()
            task.status = status
            task.completed_at = now
            task.updated_at = now
            task.result = result

            agent = self._agents.get(task.assigned_to) if task.assigned_to else None
            if agent is not None:
                if status != TaskStatus.CANCELLED:
                    duration_ms = result.duration_ms if result else 0
                    if not duration_ms and task.started_at:
                        duration_ms = int((now - task.started_at).total_seconds() * 1000)
                    _record_outcome(agent, status == TaskStatus.COMPLETED, duration_ms, now)
                if agent.current_task_id == task_id:
                    agent.status = AgentStatus.IDLE
                    agent.current_task_id = None
                agent.updated_at = now
            finished = task.model_copy(deep=True)

        logger.info(f"Task {task_id} {status.value}")
        return finished

    def auto_assign(self) -> int:
        """
        Hand pending tasks to idle agents by label overlap.

        Tasks are visited in creation order and agents in registration
        order; each task goes to the first idle, auto-assign-enabled agent
        whose labels intersect the task's (an agent without labels takes
        anything). First match wins, not best match.

        Returns:
            Number of tasks assigned
        """
        assigned = 0
        with self._lock.write():
            for task in self._tasks.values():
                if task.status != TaskStatus.PENDING:
                    continue

                for agent in self._agents.values():
                    if agent.status != AgentStatus.IDLE or not agent.config.auto_assign:
                        continue
                    if not agent.handles(task.labels):
                        continue

                    now = utc_now()
                    task.assigned_to = agent.id
                    task.status = TaskStatus.QUEUED
                    task.updated_at = now

                    agent.status = AgentStatus.WORKING
                    agent.current_task_id = task.id
                    agent.updated_at = now
                    assigned += 1
                    logger.info(f"Auto-assigned task {task.id} to agent {agent.id}")
                    break

        return assigned

    # Claims from the tracker sync loop

    def reserve_agent(self, agent_id: str, task_id: str) -> Agent:
        """
        Claim an idle agent for a task that lives outside the registry.

        Reserving an agent that already holds the same task is a no-op.

        Raises:
            AgentNotFoundError: If the agent is unknown
            AgentBusyError: If the agent is not idle
        """
        with self._lock.write():
            agent = self._require_agent(agent_id)
            if agent.current_task_id == task_id:
                return agent.model_copy(deep=True)
            if agent.status != AgentStatus.IDLE:
                raise AgentBusyError(agent_id)
            agent.status = AgentStatus.WORKING
            agent.current_task_id = task_id
            agent.updated_at = utc_now()
            reserved = agent.model_copy(deep=True)

        logger.debug(f"Reserved agent {agent_id} for task {task_id}")
        return reserved

    def release_agent(
        self,
        agent_id: str,
        task_id: str,
        success: Optional[bool] = None,
        duration_ms: int = 0
    ) -> None:
        """
        Free an agent claimed with reserve_agent.

        Args:
            agent_id: Agent to release
            task_id: Task the agent was reserved for
            success: Outcome to record in stats, or None to record nothing
            duration_ms: Execution time credited on success
        """
        with self._lock.write():
            agent = self._agents.get(agent_id)
            if agent is None:
                logger.warning(f"Cannot release unknown agent {agent_id}")
                return
            now = utc_now()
            if success is not None:
                _record_outcome(agent, success, duration_ms, now)
            if agent.current_task_id == task_id:
                agent.status = AgentStatus.IDLE
                agent.current_task_id = None
            agent.updated_at = now

    def get_stats(self) -> RegistryStats:
        """Count agents and tasks in a single pass under a shared hold."""
        stats = RegistryStats()
        with self._lock.read():
            stats.total_agents = len(self._agents)
            for agent in self._agents.values():
                if agent.status == AgentStatus.IDLE:
                    stats.idle_agents += 1
                elif agent.status in (AgentStatus.WORKING, AgentStatus.PAUSED):
                    stats.active_agents += 1

            stats.total_tasks = len(self._tasks)
            for task in self._tasks.values():
                if task.status == TaskStatus.COMPLETED:
                    stats.completed_tasks += 1
                elif task.status == TaskStatus.FAILED:
                    stats.failed_tasks += 1
        return stats

    def _require_agent(self, agent_id: str) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    def _require_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task


def _record_outcome(agent: Agent, success: bool, duration_ms: int, now: datetime) -> None:
    """Update agent stats for one finished task. Caller holds the write lock."""
    stats = agent.stats
    if success:
        stats.tasks_completed += 1
        stats.total_time_ms += duration_ms
        stats.avg_time_ms = stats.total_time_ms // stats.tasks_completed
    else:
        stats.tasks_failed += 1
    stats.success_rate = stats.tasks_completed / (stats.tasks_completed + stats.tasks_failed)
    stats.last_active = now


def default_agents() -> list[Agent]:
    """The built-in agent set registered at startup."""
    return [
        Agent(
            name="Coder",
            type=AgentType.CODER,
            description="Writes and refactors code",
            labels=["code", "implement", "refactor", "fix"],
            capabilities=["code", "implement", "refactor", "bugfix", "debug", "develop"],
            config=AgentConfig(
                auto_assign=True,
                timeout_seconds=300,
            ),
        ),
        Agent(
            name="Reviewer",
            type=AgentType.REVIEWER,
            description="Reviews code and suggests improvements",
            labels=["review", "security", "quality"],
            capabilities=["review", "security", "quality", "analyze", "audit"],
            config=AgentConfig(
                auto_assign=True,
                timeout_seconds=180,
            ),
        ),
        Agent(
            name="Planner",
            type=AgentType.PLANNER,
            description="Creates plans and breaks down tasks",
            labels=["plan", "design", "architecture"],
            capabilities=["plan", "design", "architecture", "specify", "breakdown"],
            config=AgentConfig(
                auto_assign=True,
                timeout_seconds=120,
            ),
        ),
        Agent(
            name="Documenter",
            type=AgentType.DOCUMENTER,
            description="Writes documentation and READMEs",
            labels=["docs", "readme", "documentation"],
            capabilities=["documentation", "readme", "document", "guide", "tutorial"],
            config=AgentConfig(
                auto_assign=True,
                timeout_seconds=180,
            ),
        ),
    ]
