"""Tests for task execution routines."""

import asyncio

import pytest

from agentpool.app.models import Agent, AgentConfig, Task
from agentpool.orchestrator import SimulatedExecutor, TaskExecutor


class SlowExecutor(TaskExecutor):
    async def _run(self, task, agent):
        await asyncio.sleep(5)
        return "too late"


class BrokenExecutor(TaskExecutor):
    async def _run(self, task, agent):
        raise ValueError("no workspace")


def test_agent_config_holds_enforced_settings_only():
    assert set(AgentConfig.model_fields) == {"timeout_seconds", "auto_assign"}


@pytest.mark.asyncio
async def test_timeout_from_agent_config_fails_run():
    agent = Agent(name="Slow", config=AgentConfig(timeout_seconds=1))

    result = await asyncio.wait_for(SlowExecutor().execute(Task(title="t"), agent), timeout=3)

    assert result.success is False
    assert result.error == "timed out after 1s"
    assert result.duration_ms >= 1000


@pytest.mark.asyncio
async def test_exception_becomes_failed_result():
    result = await BrokenExecutor().execute(Task(title="t"), Agent(name="a"))

    assert result.success is False
    assert result.error == "no workspace"


@pytest.mark.asyncio
@pytest.mark.parametrize("title, output", [
    ("Develop API", "Generated code successfully"),
    ("Write unit tests", "Ran tests and reported results"),
    ("Review PR", "Reviewed code and provided feedback"),
    ("Plan sprint", "Task completed successfully"),
])
async def test_simulated_output_follows_title(title, output):
    result = await SimulatedExecutor(delay=0).execute(Task(title=title), Agent(name="a"))

    assert result.success is True
    assert result.output == output
