"""Async HTTP client for the external task tracker."""

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from agentpool.app.models import utc_now
from agentpool.errors import TransientExternalError
from agentpool.tracker.models import TrackerAgent, TrackerTask

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = ("task.created", "task.updated", "task.assigned")


class ProjectClient:
    """
    Client for the tracker's REST API.

    Every request carries the API key as a bearer token. Transport errors
    and unexpected status codes surface as TransientExternalError.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize tracker client.

        Args:
            base_url: Tracker API root, e.g. "https://tracker.example.com"
            api_key: Bearer token
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )
        logger.info(f"Initialized tracker client: {self.base_url}")

    async def get_tasks(self, filters: Optional[dict[str, str]] = None) -> list[TrackerTask]:
        """
        List tasks.

        Args:
            filters: Query parameters, e.g. {"status": "todo"}

        Returns:
            Tasks returned by the tracker
        """
        data = await self._request("GET", "/api/v1/tasks", params=filters or {})
        if isinstance(data, dict):
            data = data.get("tasks")
        if not isinstance(data, list):
            raise TransientExternalError("GET /api/v1/tasks returned an unexpected body")

        tasks = []
        for item in data:
            try:
                tasks.append(TrackerTask.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed task from tracker: {e.error_count()} errors")
        return tasks

    async def get_task(self, task_id: str) -> TrackerTask:
        """Fetch a single task by tracker ID."""
        data = await self._request("GET", f"/api/v1/tasks/{task_id}")
        try:
            return TrackerTask.model_validate(data)
        except ValidationError as e:
            raise TransientExternalError(f"Malformed task {task_id} from tracker") from e

    async def update_task_status(self, task_id: str, status: str) -> None:
        """Patch a task's status (todo, in_progress, done, blocked)."""
        await self._request("PATCH", f"/api/v1/tasks/{task_id}", json={"status": status})
        logger.debug(f"Pushed status {status} for task {task_id}")

    async def assign_task(self, task_id: str, agent_id: str) -> None:
        """Create an assignment record in the tracker."""
        assignment = {
            "task_id": task_id,
            "agent_id": agent_id,
            "assigned_at": utc_now().isoformat(),
            "status": "assigned",
        }
        await self._request(
            "POST", "/api/v1/task-assignments", json=assignment, expected=(200, 201)
        )

    async def get_agents(self) -> list[TrackerAgent]:
        """List agents registered in the tracker."""
        data = await self._request("GET", "/api/v1/agents")
        try:
            return [TrackerAgent.model_validate(item) for item in data or []]
        except ValidationError as e:
            raise TransientExternalError("Malformed agent list from tracker") from e

    async def create_webhook(self, callback_url: str) -> None:
        """Register a callback URL for task events."""
        webhook = {"url": callback_url, "events": ",".join(WEBHOOK_EVENTS)}
        await self._request("POST", "/api/v1/webhooks", json=webhook, expected=(200, 201))
        logger.info(f"Registered webhook {callback_url}")

    async def _request(
        self,
        method: str,
        path: str,
        expected: tuple[int, ...] = (200,),
        **kwargs: Any
    ) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TransientExternalError(f"{method} {path} failed: {e}") from e

        if response.status_code not in expected:
            raise TransientExternalError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransientExternalError(f"{method} {path} returned invalid JSON") from e

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ProjectClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
