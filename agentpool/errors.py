"""Error taxonomy for the agent pool."""

from typing import Optional


class AgentPoolError(Exception):
    """Base exception for agentpool."""
    pass


class NotFoundError(AgentPoolError):
    """Unknown agent or task. Caller error, never retried."""
    pass


class AgentNotFoundError(NotFoundError):
    """Agent ID is not registered."""

    def __init__(self, agent_id: str):
        super().__init__(f"agent not found: {agent_id}")
        self.agent_id = agent_id


class TaskNotFoundError(NotFoundError):
    """Task ID is not known."""

    def __init__(self, task_id: str):
        super().__init__(f"task not found: {task_id}")
        self.task_id = task_id


class AgentBusyError(AgentPoolError):
    """Agent is already claimed by another task."""

    def __init__(self, agent_id: str):
        super().__init__(f"agent is busy: {agent_id}")
        self.agent_id = agent_id


class TaskStateError(AgentPoolError):
    """Task is in a state that does not allow the requested transition."""
    pass


class TransientExternalError(AgentPoolError):
    """Network or API failure talking to the tracker.

    Not retried immediately; the next poll cycle picks the work up again.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedEventError(AgentPoolError):
    """Webhook payload is missing required fields or has the wrong shape."""
    pass


class DispatchQueueClosedError(AgentPoolError):
    """Dispatch queue no longer accepts work."""
    pass
