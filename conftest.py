"""Shared fixtures for agentpool tests."""

from typing import Optional
from unittest.mock import AsyncMock

import pytest

from agentpool.app.config import ProjectSettings
from agentpool.app.models import Agent, Task, TaskResult
from agentpool.orchestrator import ProjectSyncManager, Registry, TaskExecutor


class FakeExecutor(TaskExecutor):
    """Executor that finishes immediately and records what it ran."""

    def __init__(self, fail_with: Optional[str] = None):
        self.fail_with = fail_with
        self.runs: list[tuple[str, str]] = []

    async def _run(self, task: Task, agent: Agent) -> str:
        self.runs.append((task.external_id or task.id, agent.id))
        if self.fail_with:
            raise RuntimeError(self.fail_with)
        return f"done by {agent.name}"


@pytest.fixture
def registry() -> Registry:
    return Registry()


@pytest.fixture
def project_settings() -> ProjectSettings:
    return ProjectSettings(
        enabled=True,
        base_url="http://tracker.test",
        api_key="secret",
        poll_interval=3600,
        max_workers=2,
        max_pending=10,
        shutdown_timeout=2.0,
    )


@pytest.fixture
def tracker_client() -> AsyncMock:
    """Tracker client double; every call succeeds with an empty answer."""
    client = AsyncMock()
    client.get_tasks.return_value = []
    client.assign_task.return_value = None
    client.update_task_status.return_value = None
    client.create_webhook.return_value = None
    return client


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def manager(tracker_client, registry, project_settings, executor) -> ProjectSyncManager:
    return ProjectSyncManager(tracker_client, registry, project_settings, executor=executor)


@pytest.fixture
def make_manager(tracker_client, registry, project_settings):
    """Build a sync manager with settings overrides and a chosen executor."""

    def build(executor: Optional[TaskExecutor] = None, **overrides) -> ProjectSyncManager:
        config = project_settings.model_copy(update=overrides)
        return ProjectSyncManager(
            tracker_client, registry, config, executor=executor or FakeExecutor()
        )

    return build


@pytest.fixture
def success_result() -> TaskResult:
    return TaskResult(success=True, output="ok", duration_ms=100)
