"""Validation of inbound tracker webhook events."""

import logging
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from agentpool.app.models import utc_now
from agentpool.errors import MalformedEventError
from agentpool.tracker.models import TrackerTask

logger = logging.getLogger(__name__)

EventType = Literal["task.created", "task.updated", "task.assigned"]


class WebhookEvent(BaseModel):
    """Decoded webhook event from the tracker."""
    type: EventType
    timestamp: datetime = Field(default_factory=utc_now)
    data: dict[str, Any] = {}


class TaskCreatedData(BaseModel):
    """Payload of task.created."""
    task: TrackerTask


class TaskUpdatedData(BaseModel):
    """Payload of task.updated; absent fields are left untouched."""
    task_id: str
    status: Optional[str] = None
    assignee: Optional[str] = None

    @field_validator("task_id")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("task_id must not be empty")
        return value


class TaskAssignedData(BaseModel):
    """Payload of task.assigned."""
    task_id: str
    agent_id: str

    @field_validator("task_id", "agent_id")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be empty")
        return value


PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    "task.created": TaskCreatedData,
    "task.updated": TaskUpdatedData,
    "task.assigned": TaskAssignedData,
}


def event_payload(event: WebhookEvent) -> BaseModel:
    """Typed view of an event's data. Raises MalformedEventError if invalid."""
    try:
        return PAYLOAD_MODELS[event.type].model_validate(event.data)
    except ValidationError as e:
        raise MalformedEventError(
            f"invalid {event.type} payload: {e.error_count()} errors"
        ) from e


def parse_webhook_event(payload: Any) -> WebhookEvent:
    """
    Validate a raw webhook body.

    Both the envelope and the per-type payload are checked, so an event
    that passes never needs re-checking further in.

    Args:
        payload: JSON-decoded request body

    Returns:
        The validated event

    Raises:
        MalformedEventError: If the event type is unknown or fields are missing
    """
    if not isinstance(payload, dict):
        raise MalformedEventError("webhook body must be a JSON object")

    try:
        event = WebhookEvent.model_validate(payload)
    except ValidationError as e:
        raise MalformedEventError(f"invalid webhook envelope: {e.error_count()} errors") from e

    event_payload(event)
    logger.debug(f"Accepted webhook event {event.type}")
    return event
