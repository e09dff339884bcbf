"""Boundary to the external task tracker: HTTP client and webhook events."""

from agentpool.tracker.client import ProjectClient
from agentpool.tracker.models import TrackerAgent, TrackerTask, status_from_tracker
from agentpool.tracker.webhook import (
    TaskAssignedData,
    TaskCreatedData,
    TaskUpdatedData,
    WebhookEvent,
    event_payload,
    parse_webhook_event,
)

__all__ = [
    "ProjectClient",
    "TaskAssignedData",
    "TaskCreatedData",
    "TaskUpdatedData",
    "TrackerAgent",
    "TrackerTask",
    "WebhookEvent",
    "event_payload",
    "parse_webhook_event",
    "status_from_tracker",
]
