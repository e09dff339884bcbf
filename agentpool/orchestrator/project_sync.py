"""Synchronization between the external tracker and the local agent pool."""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Optional

from agentpool.app.config import ProjectSettings
from agentpool.app.models import (
    Agent,
    Assignment,
    AssignmentStatus,
    Task,
    TaskResult,
    TaskStatus,
    utc_now,
)
from agentpool.errors import (
    AgentBusyError,
    AgentNotFoundError,
    DispatchQueueClosedError,
    MalformedEventError,
    TransientExternalError,
)
from agentpool.locking import ReadWriteLock
from agentpool.orchestrator.assignment_engine import AssignmentEngine
from agentpool.orchestrator.executor import SimulatedExecutor, TaskExecutor
from agentpool.orchestrator.registry import Registry
from agentpool.queue import DispatchQueue
from agentpool.tracker import (
    ProjectClient,
    TaskAssignedData,
    TaskCreatedData,
    TaskUpdatedData,
    TrackerTask,
    WebhookEvent,
    event_payload,
    status_from_tracker,
)

logger = logging.getLogger(__name__)

PRE_EXECUTION_STATUSES = (TaskStatus.PENDING, TaskStatus.QUEUED)

DispatchKey = tuple[str, str, datetime]


def dispatch_key(assignment: Assignment) -> DispatchKey:
    """Identity of one assignment: a reassignment gets a new key."""
    return (assignment.task_id, assignment.agent_id, assignment.assigned_at)


class ProjectSyncManager:
    """
    Bridge between the tracker and the registry.

    Owns a mirror of tracker tasks keyed by tracker ID and the assignments
    made for them. Tasks reach the mirror from the poll loop and from
    webhook events; unassigned ones are matched to registry agents and
    handed to the dispatch queue for execution.

    Network calls and executor runs never happen while the mirror lock is
    held: state is read, the call is made, and the result is written back
    in a separate short critical section.
    """

    def __init__(
        self,
        client: ProjectClient,
        registry: Registry,
        config: ProjectSettings,
        executor: Optional[TaskExecutor] = None,
        engine: Optional[AssignmentEngine] = None
    ):
        """
        Initialize sync manager.

        Args:
            client: Tracker API client
            registry: Agent registry to match against
            config: Tracker settings
            executor: Execution routine (default: SimulatedExecutor)
            engine: Matcher (default: AssignmentEngine)
        """
        self.client = client
        self.registry = registry
        self.config = config
        self.executor = executor or SimulatedExecutor(config.simulated_execution_seconds)
        self.engine = engine or AssignmentEngine()

        self._tasks: dict[str, Task] = {}  # tracker task ID -> mirrored task
        self._assignments: dict[str, Assignment] = {}  # tracker task ID -> assignment
        self._inflight: set[DispatchKey] = set()  # assignments submitted for execution
        self._lock = ReadWriteLock("project-mirror")

        self._dispatcher = DispatchQueue(
            self.execute_task,
            max_workers=config.max_workers,
            max_pending=config.max_pending,
            name="project-dispatch",
            on_discard=self._abandon
        )
        self._poll_task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self._accepting = False

    @property
    def running(self) -> bool:
        return self._accepting

    async def start(self) -> None:
        """
        Start polling, register the webhook and begin accepting events.

        Does nothing when the integration is disabled.
        """
        logger.info("Starting project manager integration...")

        if not self.config.enabled:
            logger.info("Project manager integration disabled")
            return
        if self._accepting:
            return

        self._stopping.clear()
        await self._dispatcher.start()
        self._accepting = True

        try:
            await self.client.create_webhook(self.config.webhook_url)
        except TransientExternalError as e:
            logger.warning(f"Failed to register webhook: {e}")

        self._poll_task = asyncio.create_task(self._poll_loop(), name="project-poller")
        logger.info("Project manager integration started")

    async def stop(self) -> None:
        """
        Stop polling and event intake, then wait for running executions.

        Executions still running after ``shutdown_timeout`` are left alone
        and reported in the log.
        """
        logger.info("Stopping project manager integration...")
        self._accepting = False
        self._stopping.set()

        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        outstanding = await self._dispatcher.close(self.config.shutdown_timeout)
        if outstanding:
            logger.warning(f"Stopped with {outstanding} task executions still running")
        logger.info("Project manager integration stopped")

    async def _poll_loop(self) -> None:
        interval = self.config.effective_poll_interval
        while not self._stopping.is_set():
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in poll cycle: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def poll_once(self) -> int:
        """
        Run one poll cycle.

        Fetches the tracker's "todo" tasks, upserts them into the mirror and
        auto-assigns the unassigned ones. A tracker failure ends the cycle;
        the next tick tries again.

        Returns:
            Number of tasks received from the tracker
        """
        try:
            remote_tasks = await self.client.get_tasks({"status": "todo"})
        except TransientExternalError as e:
            logger.warning(f"Failed to load tasks: {e}")
            return 0

        to_assign = []
        with self._lock.write():
            for remote in remote_tasks:
                task = self._upsert(remote)
                if self._needs_assignment(task):
                    to_assign.append(task)
            tracked = len(self._tasks)

        logger.info(f"Loaded {len(remote_tasks)} tasks ({tracked} tracked)")

        for task in to_assign:
            if self._stopping.is_set():
                break
            await self._auto_assign(task)

        return len(remote_tasks)

    # Webhook events

    async def ingest_event(self, event: WebhookEvent) -> bool:
        """
        Apply a validated webhook event.

        Returns:
            True if the event changed local state or was a known duplicate,
            False if it was dropped
        """
        if not self._accepting:
            logger.warning(f"Dropping {event.type} event: integration not running")
            return False

        logger.info(f"Received webhook event: {event.type}")
        handlers = {
            "task.created": self.handle_task_created,
            "task.updated": self.handle_task_updated,
            "task.assigned": self.handle_task_assigned,
        }
        try:
            return await handlers[event.type](event)
        except MalformedEventError as e:
            logger.warning(f"Rejected {event.type} event: {e}")
            return False

    async def handle_task_created(self, event: WebhookEvent) -> bool:
        """Upsert the embedded task and auto-assign it if eligible."""
        data: TaskCreatedData = event_payload(event)

        with self._lock.write():
            task = self._upsert(data.task)
            eligible = self._needs_assignment(task)

        logger.info(f"Processed new task: {task.title}")
        if eligible:
            await self._auto_assign(task)
        return True

    async def handle_task_updated(self, event: WebhookEvent) -> bool:
        """
        Patch status and/or assignee of a known task.

        Updates for tasks not in the mirror are dropped; the next poll
        cycle brings the task in with its current state.
        """
        data: TaskUpdatedData = event_payload(event)

        with self._lock.write():
            task = self._tasks.get(data.task_id)
            if task is not None:
                if data.status is not None:
                    task.external_status = data.status
                    task.status = status_from_tracker(data.status)
                if "assignee" in data.model_fields_set:
                    task.assigned_to = data.assignee or None
                task.updated_at = utc_now()

        if task is None:
            logger.info(f"Dropping update for unknown task {data.task_id}")
            return False

        logger.info(f"Updated task {data.task_id}")
        return True

    async def handle_task_assigned(self, event: WebhookEvent) -> bool:
        """
        Record a tracker-made assignment and start it if the task is ready.

        The record is written even for tasks the mirror has not seen. A
        repeat naming the same agent changes nothing while that assignment
        is active, or once the task has finished locally.
        """
        data: TaskAssignedData = event_payload(event)
        assignment = Assignment(
            task_id=data.task_id,
            agent_id=data.agent_id,
            assigned_by="tracker"
        )

        with self._lock.write():
            existing = self._assignments.get(data.task_id)
            task = self._tasks.get(data.task_id)
            duplicate = (
                existing is not None
                and existing.agent_id == data.agent_id
                and (existing.active or (task is not None and task.status.is_terminal))
            )
            ready = False
            if not duplicate:
                self._assignments[data.task_id] = assignment.model_copy()
                if task is not None:
                    task.assigned_to = data.agent_id
                    task.updated_at = utc_now()
                    ready = task.status in PRE_EXECUTION_STATUSES
                    if ready:
                        task.status = TaskStatus.QUEUED

        if duplicate:
            logger.info(f"Ignoring duplicate assignment: task {data.task_id} -> agent {data.agent_id}")
            return True

        if ready:
            await self._dispatch(assignment)

        logger.info(f"Processed assignment: task {data.task_id} -> agent {data.agent_id}")
        return True

    # Assignment

    async def _auto_assign(self, task: Task) -> Optional[Assignment]:
        """
        Match a mirrored task to an agent, tell the tracker and dispatch it.

        Candidates are tried best first; one claimed by someone else in the
        meantime is skipped in favour of the next.
        """
        task_id = task.external_id
        candidates = [a for a in self.registry.list_agents() if a.config.auto_assign]
        ranked = self.engine.rank_agents(task, candidates)
        if not ranked:
            logger.info(f"No suitable agent found for task {task_id}")
            return None

        agent: Optional[Agent] = None
        for candidate, _ in ranked:
            try:
                self.registry.reserve_agent(candidate.id, task_id)
            except (AgentBusyError, AgentNotFoundError):
                continue
            agent = candidate
            break

        if agent is None:
            logger.info(f"All suitable agents busy for task {task_id}, retrying next poll")
            return None

        try:
            await self.client.assign_task(task_id, agent.id)
        except TransientExternalError as e:
            logger.warning(f"Failed to assign task {task_id} to agent {agent.id}: {e}")
            self.registry.release_agent(agent.id, task_id)
            return None
        except asyncio.CancelledError:
            self.registry.release_agent(agent.id, task_id)
            raise

        assignment = Assignment(task_id=task_id, agent_id=agent.id, assigned_by="auto")
        with self._lock.write():
            existing = self._assignments.get(task_id)
            conflict = existing is not None and existing.active
            if not conflict:
                self._assignments[task_id] = assignment.model_copy()
                mirrored = self._tasks.get(task_id)
                if mirrored is not None:
                    mirrored.assigned_to = agent.id
                    mirrored.status = TaskStatus.QUEUED
                    mirrored.updated_at = utc_now()

        if conflict:
            logger.info(f"Task {task_id} was assigned elsewhere meanwhile, releasing agent {agent.id}")
            self.registry.release_agent(agent.id, task_id)
            return None

        logger.info(f"Auto-assigned task {task_id} to agent {agent.id}")
        await self._dispatch(assignment)
        return assignment

    async def _dispatch(self, assignment: Assignment) -> bool:
        with self._lock.write():
            key = dispatch_key(assignment)
            if key in self._inflight:
                logger.info(f"Task {assignment.task_id} already dispatched to agent {assignment.agent_id}")
                return False
            self._inflight.add(key)

        try:
            await self._dispatcher.submit(assignment)
        except DispatchQueueClosedError as e:
            logger.warning(f"Could not dispatch task {assignment.task_id}: {e}")
            with self._lock.write():
                self._inflight.discard(dispatch_key(assignment))
            self.registry.release_agent(assignment.agent_id, assignment.task_id)
            return False
        return True

    def _abandon(self, assignment: Assignment) -> None:
        """
        Settle an assignment dropped from the dispatch queue unrun.

        The agent is freed and a still-current assignment is marked failed
        locally; nothing is pushed, so the tracker keeps the task open and a
        later poll assigns it again.
        """
        task_id, agent_id = assignment.task_id, assignment.agent_id
        logger.warning(f"Abandoning queued task {task_id} for agent {agent_id}")

        with self._lock.write():
            self._inflight.discard(dispatch_key(assignment))
            current = self._is_current(assignment)

        if current:
            result = TaskResult(success=False, error="Dropped from queue before execution")
            self._mark_finished(assignment, result, pushed=False)
        with self._lock.read():
            still_holds = self._assigned_agent(task_id) == agent_id
        if not still_holds:
            self.registry.release_agent(agent_id, task_id)

    # Execution

    async def execute_task(self, assignment: Assignment) -> Assignment:
        """
        Run an assignment end to end.

        Fetches the task, pushes "in_progress", runs the executor with the
        assigned agent and pushes "done" or "blocked". Failures along the way
        end up in the assignment's result; nothing is raised.

        Args:
            assignment: Assignment to run

        Returns:
            The assignment as recorded after the run
        """
        logger.info(
            f"Starting execution of task {assignment.task_id} with agent {assignment.agent_id}"
        )
        try:
            return await self._execute(assignment)
        finally:
            with self._lock.write():
                self._inflight.discard(dispatch_key(assignment))

    async def _execute(self, assignment: Assignment) -> Assignment:
        task_id, agent_id = assignment.task_id, assignment.agent_id

        with self._lock.read():
            current = self._is_current(assignment)
            still_holds = self._assigned_agent(task_id) == agent_id
        if not current:
            # The superseding assignment was dispatched under its own key.
            logger.info(f"Assignment of task {task_id} to agent {agent_id} was superseded")
            if not still_holds:
                self.registry.release_agent(agent_id, task_id)
            return assignment

        try:
            remote = await self.client.get_task(task_id)
        except TransientExternalError as e:
            logger.warning(f"Failed to get task {task_id}: {e}")
            self.registry.release_agent(agent_id, task_id)
            result = TaskResult(success=False, error=f"failed to fetch task: {e}")
            return self._mark_finished(assignment, result, pushed=False)

        with self._lock.write():
            task = self._upsert(remote)

        await self._push_status(task_id, "in_progress")
        self._mark_started(assignment)

        agent: Optional[Agent] = None
        try:
            agent = self.registry.reserve_agent(agent_id, task_id)
        except AgentNotFoundError:
            result = TaskResult(success=False, error="Agent not found")
        except AgentBusyError:
            result = TaskResult(success=False, error="Agent is busy")

        if agent is not None:
            result = await self.executor.execute(task, agent)

        await self._push_status(task_id, "done" if result.success else "blocked")
        finished = self._mark_finished(assignment, result)

        if agent is not None:
            self.registry.release_agent(
                agent_id, task_id, success=result.success, duration_ms=result.duration_ms
            )

        logger.info(f"Task {task_id} execution completed with status: {finished.status.value}")
        return finished

    async def _push_status(self, task_id: str, status: str) -> None:
        try:
            await self.client.update_task_status(task_id, status)
        except TransientExternalError as e:
            logger.warning(f"Failed to update task {task_id} status to {status}: {e}")

    def _mark_started(self, assignment: Assignment) -> None:
        now = utc_now()
        with self._lock.write():
            if not self._is_current(assignment):
                return
            self._assignments[assignment.task_id] = self._assignments[
                assignment.task_id
            ].model_copy(update={"status": AssignmentStatus.IN_PROGRESS, "started_at": now})
            task = self._tasks.get(assignment.task_id)
            if task is not None:
                task.status = TaskStatus.IN_PROGRESS
                task.external_status = "in_progress"
                task.started_at = now
                task.updated_at = now

    def _mark_finished(
        self,
        assignment: Assignment,
        result: TaskResult,
        pushed: bool = True
    ) -> Assignment:
        now = utc_now()
        status = AssignmentStatus.COMPLETED if result.success else AssignmentStatus.FAILED
        with self._lock.write():
            if self._is_current(assignment):
                current = self._assignments[assignment.task_id]
                finished = current.model_copy(update={
                    "status": status,
                    "result": result,
                    "started_at": current.started_at or now,
                    "completed_at": now,
                })
                self._assignments[assignment.task_id] = finished
            else:
                finished = assignment.model_copy(update={
                    "status": status, "result": result, "completed_at": now
                })

            task = self._tasks.get(assignment.task_id)
            if task is not None and task.assigned_to == assignment.agent_id:
                task.status = TaskStatus.COMPLETED if result.success else TaskStatus.FAILED
                if pushed:
                    task.external_status = "done" if result.success else "blocked"
                task.result = result
                task.completed_at = now
                task.updated_at = now
            return finished.model_copy()

    # Mirror internals; callers hold the write lock

    def _upsert(self, remote: TrackerTask) -> Task:
        incoming = remote.to_task(self.config.source)
        existing = self._tasks.get(remote.id)
        if existing is None:
            incoming.id = str(uuid.uuid4())
        else:
            incoming.id = existing.id
            incoming.created_at = existing.created_at
            assignment = self._assignments.get(remote.id)
            if assignment is not None and assignment.active:
                incoming.assigned_to = assignment.agent_id
                incoming.status = existing.status
                incoming.started_at = existing.started_at
        self._tasks[remote.id] = incoming
        return incoming.model_copy(deep=True)

    def _needs_assignment(self, task: Task) -> bool:
        if not self.config.auto_assign or task.assigned_to:
            return False
        if task.status != TaskStatus.PENDING:
            return False
        assignment = self._assignments.get(task.external_id)
        return assignment is None or not assignment.active

    def _assigned_agent(self, task_id: str) -> Optional[str]:
        stored = self._assignments.get(task_id)
        return stored.agent_id if stored is not None and stored.active else None

    def _is_current(self, assignment: Assignment) -> bool:
        stored = self._assignments.get(assignment.task_id)
        return (
            stored is not None
            and stored.agent_id == assignment.agent_id
            and stored.assigned_at == assignment.assigned_at
        )

    # Reads

    def get_tasks(self) -> dict[str, Task]:
        """Copy of the mirror, keyed by tracker task ID."""
        with self._lock.read():
            return {k: t.model_copy(deep=True) for k, t in self._tasks.items()}

    def get_task(self, task_id: str) -> Optional[Task]:
        """Mirrored task by tracker ID, or None."""
        with self._lock.read():
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task else None

    def get_assignment(self, task_id: str) -> Optional[Assignment]:
        with self._lock.read():
            assignment = self._assignments.get(task_id)
            return assignment.model_copy() if assignment else None

    def list_assignments(self) -> list[Assignment]:
        with self._lock.read():
            return [a.model_copy() for a in self._assignments.values()]

    def get_task_status(self, task_id: str) -> Optional[AssignmentStatus]:
        """Execution status of a tracker task, or None if never assigned."""
        assignment = self.get_assignment(task_id)
        return assignment.status if assignment else None
