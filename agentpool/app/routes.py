"""REST routes over the registry and the tracker sync manager."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from agentpool.app.models import (
    Agent,
    AgentConfig,
    AgentType,
    Assignment,
    Task,
    TaskPriority,
    TaskResult,
    TaskStatus,
)
from agentpool.errors import MalformedEventError
from agentpool.orchestrator import AssignmentEngine, ProjectSyncManager, Registry, RegistryStats
from agentpool.tracker import parse_webhook_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")


def get_registry(request: Request) -> Registry:
    return request.app.state.registry


def get_sync_manager(request: Request) -> ProjectSyncManager:
    return request.app.state.sync_manager


class AgentCreate(BaseModel):
    """Request body for creating an agent."""
    name: str
    type: AgentType = AgentType.GENERAL
    description: Optional[str] = None
    labels: list[str] = []
    capabilities: list[str] = []
    load: int = 0
    config: AgentConfig = AgentConfig()


class TaskCreate(BaseModel):
    """Request body for creating a task."""
    title: str
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    labels: list[str] = []
    project_id: Optional[str] = None


class AssignRequest(BaseModel):
    agent_id: str


class FailRequest(BaseModel):
    error: str
    duration_ms: int = 0


class RecommendRequest(BaseModel):
    title: str
    description: str = ""
    limit: int = 3


# Agents

@router.get("/agents")
def list_agents(registry: Registry = Depends(get_registry)) -> list[Agent]:
    return registry.list_agents()


@router.post("/agents", status_code=201)
def create_agent(body: AgentCreate, registry: Registry = Depends(get_registry)) -> Agent:
    agent = Agent(**body.model_dump(exclude_none=True))
    return registry.register_agent(agent)


@router.post("/agents/recommend")
def recommend_agents(
    body: RecommendRequest,
    registry: Registry = Depends(get_registry)
) -> list[dict[str, Any]]:
    """Rank idle agents for a prospective task without assigning it."""
    task = Task(title=body.title, description=body.description)
    ranked = AssignmentEngine().rank_agents(task, registry.list_agents())
    return [
        {"agent_id": agent.id, "name": agent.name, "score": round(score, 3)}
        for agent, score in ranked[:body.limit]
    ]


@router.get("/agents/{agent_id}")
def get_agent(agent_id: str, registry: Registry = Depends(get_registry)) -> Agent:
    return registry.get_agent(agent_id)


@router.delete("/agents/{agent_id}", status_code=204)
def delete_agent(agent_id: str, registry: Registry = Depends(get_registry)) -> None:
    registry.delete_agent(agent_id)


@router.post("/agents/{agent_id}/start")
def start_agent(agent_id: str, registry: Registry = Depends(get_registry)) -> Agent:
    return registry.start_agent(agent_id)


@router.post("/agents/{agent_id}/stop")
def stop_agent(agent_id: str, registry: Registry = Depends(get_registry)) -> Agent:
    return registry.stop_agent(agent_id)


# Tasks

@router.get("/tasks")
def list_tasks(
    status: Optional[TaskStatus] = None,
    registry: Registry = Depends(get_registry)
) -> list[Task]:
    return registry.list_tasks(status)


@router.post("/tasks", status_code=201)
def create_task(body: TaskCreate, registry: Registry = Depends(get_registry)) -> Task:
    return registry.create_task(Task(**body.model_dump()))


@router.post("/tasks/auto-assign")
def auto_assign(registry: Registry = Depends(get_registry)) -> dict[str, int]:
    return {"assigned": registry.auto_assign()}


@router.get("/tasks/{task_id}")
def get_task(task_id: str, registry: Registry = Depends(get_registry)) -> Task:
    return registry.get_task(task_id)


@router.post("/tasks/{task_id}/assign")
def assign_task(
    task_id: str,
    body: AssignRequest,
    registry: Registry = Depends(get_registry)
) -> Task:
    return registry.assign_task(task_id, body.agent_id)


@router.post("/tasks/{task_id}/complete")
def complete_task(
    task_id: str,
    result: Optional[TaskResult] = None,
    registry: Registry = Depends(get_registry)
) -> Task:
    return registry.complete_task(task_id, result)


@router.post("/tasks/{task_id}/fail")
def fail_task(
    task_id: str,
    body: FailRequest,
    registry: Registry = Depends(get_registry)
) -> Task:
    return registry.fail_task(task_id, body.error, body.duration_ms)


@router.post("/tasks/{task_id}/cancel")
def cancel_task(task_id: str, registry: Registry = Depends(get_registry)) -> Task:
    return registry.cancel_task(task_id)


@router.get("/stats")
def get_stats(registry: Registry = Depends(get_registry)) -> RegistryStats:
    return registry.get_stats()


# Tracker

@router.get("/project/tasks")
def list_project_tasks(
    manager: ProjectSyncManager = Depends(get_sync_manager)
) -> dict[str, Task]:
    return manager.get_tasks()


@router.get("/project/assignments")
def list_project_assignments(
    manager: ProjectSyncManager = Depends(get_sync_manager)
) -> list[Assignment]:
    return manager.list_assignments()


@router.get("/project/assignments/{task_id}")
def get_project_assignment(
    task_id: str,
    manager: ProjectSyncManager = Depends(get_sync_manager)
) -> Assignment:
    assignment = manager.get_assignment(task_id)
    if assignment is None:
        raise HTTPException(status_code=404, detail=f"no assignment for task {task_id}")
    return assignment


@router.post("/project/webhook")
async def project_webhook(
    request: Request,
    manager: ProjectSyncManager = Depends(get_sync_manager)
) -> dict[str, str]:
    """Receive a tracker event. Malformed events are rejected with 400."""
    try:
        payload = await request.json()
    except ValueError:
        raise MalformedEventError("webhook body is not valid JSON")

    event = parse_webhook_event(payload)
    processed = await manager.ingest_event(event)
    return {"status": "processed" if processed else "ignored"}
