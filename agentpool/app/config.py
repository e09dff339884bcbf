"""Application configuration."""

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_POLL_INTERVAL = 30  # seconds


class ProjectSettings(BaseModel):
    """Tracker synchronization settings."""

    enabled: bool = False
    auto_assign: bool = True
    poll_interval: int = DEFAULT_POLL_INTERVAL  # seconds, 0 means default
    base_url: str = ""
    api_key: str = ""
    webhook_url: str = "http://localhost:8000/api/v1/project/webhook"
    source: str = "tracker"  # tag stored on mirrored tasks

    # Dispatch
    max_workers: int = 4
    max_pending: int = 100
    shutdown_timeout: float = 10.0  # seconds
    request_timeout: float = 30.0  # seconds
    simulated_execution_seconds: float = 2.0

    @property
    def effective_poll_interval(self) -> int:
        return self.poll_interval if self.poll_interval > 0 else DEFAULT_POLL_INTERVAL


class Settings(BaseSettings):
    """Application settings."""

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Agents
    register_default_agents: bool = True

    # Tracker
    project: ProjectSettings = ProjectSettings()

    # Logging
    log_level: str = "INFO"
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False
    )


# Global settings instance
settings = Settings()
