"""Pluggable task execution routines."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod

from agentpool.app.models import Agent, Task, TaskResult

logger = logging.getLogger(__name__)


class TaskExecutor(ABC):
    """Base class for routines that carry out a task with an agent."""

    async def execute(self, task: Task, agent: Agent) -> TaskResult:
        """
        Run a task and report the outcome.

        Exceptions and timeouts from the routine are turned into a failed
        result; this method does not raise.

        Args:
            task: Task to execute
            agent: Agent executing it

        Returns:
            TaskResult with success flag, output or error, and duration
        """
        start_time = time.monotonic()
        timeout = agent.config.timeout_seconds or None

        try:
            output = await asyncio.wait_for(self._run(task, agent), timeout=timeout)
            return TaskResult(
                success=True,
                output=output,
                duration_ms=_elapsed_ms(start_time)
            )
        except asyncio.TimeoutError:
            logger.error(f"Task {task.id} timed out after {timeout}s on agent {agent.id}")
            return TaskResult(
                success=False,
                error=f"timed out after {timeout}s",
                duration_ms=_elapsed_ms(start_time)
            )
        except Exception as e:
            logger.error(f"Task execution failed: {e}", exc_info=True)
            return TaskResult(
                success=False,
                error=str(e),
                duration_ms=_elapsed_ms(start_time)
            )

    @abstractmethod
    async def _run(self, task: Task, agent: Agent) -> str:
        """
        Do the work.

        Subclasses must implement this.

        Args:
            task: Task to execute
            agent: Agent executing it

        Returns:
            Human-readable output of the run
        """
        pass


class SimulatedExecutor(TaskExecutor):
    """Placeholder executor that sleeps and returns canned output."""

    def __init__(self, delay: float = 2.0):
        """
        Initialize simulated executor.

        Args:
            delay: Seconds each simulated run takes
        """
        self.delay = delay

    async def _run(self, task: Task, agent: Agent) -> str:
        logger.info(f"Simulating execution of task '{task.title}' with agent '{agent.name}'")
        await asyncio.sleep(self.delay)

        title = task.title.lower()
        if "code" in title or "develop" in title:
            return "Generated code successfully"
        if "test" in title:
            return "Ran tests and reported results"
        if "review" in title:
            return "Reviewed code and provided feedback"
        return "Task completed successfully"


def _elapsed_ms(start_time: float) -> int:
    return int((time.monotonic() - start_time) * 1000)
