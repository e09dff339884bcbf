"""FastAPI application for the agent pool."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agentpool import __version__
from agentpool.errors import (
    AgentBusyError,
    MalformedEventError,
    NotFoundError,
    TaskStateError,
)
from agentpool.orchestrator import (
    ProjectSyncManager,
    Registry,
    TaskExecutor,
    default_agents,
)
from agentpool.tracker import ProjectClient

from .config import Settings, settings
from .routes import router

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_app(
    app_settings: Optional[Settings] = None,
    client: Optional[ProjectClient] = None,
    executor: Optional[TaskExecutor] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        app_settings: Settings to use (default: module-level settings)
        client: Tracker client (default: built from settings)
        executor: Execution routine for tracker tasks (default: simulated)

    Returns:
        Configured FastAPI app
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown."""
        # Startup
        logger.info("Starting agentpool API")
        registry = Registry()
        if app_settings.register_default_agents:
            for agent in default_agents():
                registry.register_agent(agent)

        project = app_settings.project
        tracker = client or ProjectClient(
            project.base_url, project.api_key, timeout=project.request_timeout
        )
        manager = ProjectSyncManager(tracker, registry, project, executor=executor)

        app.state.registry = registry
        app.state.sync_manager = manager
        await manager.start()

        yield

        # Shutdown
        logger.info("Shutting down agentpool API")
        await manager.stop()
        await tracker.aclose()

    app = FastAPI(
        title="Agent Pool API",
        description="Worker-agent pool with external tracker synchronization",
        version=__version__,
        lifespan=lifespan
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(AgentBusyError)
    @app.exception_handler(TaskStateError)
    async def conflict_handler(request: Request, exc: Exception):
        return JSONResponse(status_code=409, content={"error": str(exc)})

    @app.exception_handler(MalformedEventError)
    async def malformed_event_handler(request: Request, exc: MalformedEventError):
        logger.warning(f"Rejected webhook: {exc}")
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Agent Pool API",
            "version": __version__,
            "status": "running"
        }

    @app.get("/health")
    async def health(request: Request):
        """Health check endpoint."""
        manager = request.app.state.sync_manager
        return {"status": "healthy", "project_sync": manager.running}

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
