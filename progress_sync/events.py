"""
Push Event Envelopes

Pydantic model for the JSON envelopes carried by the push channel:
    { type, jobId?, issuesFixed?, error?, status?, summary? }
Field names are accepted in camelCase or snake_case. Unknown fields are kept.
"""

import json
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from config.constants import (
    EVENT_CONNECTED,
    EVENT_JOB_STARTED,
    EVENT_JOB_COMPLETED,
    EVENT_JOB_FAILED,
    EVENT_BATCH_COMPLETED,
)
from .errors import EventParseError
from .models import JobState


class EventType(str, Enum):
    """Recognised event types"""
    CONNECTED = EVENT_CONNECTED
    JOB_STARTED = EVENT_JOB_STARTED
    JOB_COMPLETED = EVENT_JOB_COMPLETED
    JOB_FAILED = EVENT_JOB_FAILED
    BATCH_COMPLETED = EVENT_BATCH_COMPLETED


# Job status each job-level event moves its job to
JOB_EVENT_TARGETS = {
    EventType.JOB_STARTED: JobState.PROCESSING,
    EventType.JOB_COMPLETED: JobState.COMPLETED,
    EventType.JOB_FAILED: JobState.FAILED,
}


class EventEnvelope(BaseModel):
    """Delta event delivered over the push channel"""

    model_config = ConfigDict(
        extra="allow",
        frozen=True,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    type: str
    batch_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("batchId", "batch_id"))
    job_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("jobId", "job_id"))
    issues_fixed: Optional[int] = Field(
        default=None, ge=0, validation_alias=AliasChoices("issuesFixed", "issues_fixed")
    )
    error: Optional[str] = None
    status: Optional[str] = None
    summary: Optional[Dict[str, Any]] = None

    @property
    def event_type(self) -> Optional[EventType]:
        """Recognised type, or None for forward-compatible unknown types"""
        try:
            return EventType(self.type)
        except ValueError:
            return None

    @property
    def target_state(self) -> Optional[JobState]:
        """Job status this event moves its job to (job-level events only)"""
        return JOB_EVENT_TARGETS.get(self.event_type)

    @property
    def is_job_event(self) -> bool:
        return self.target_state is not None

    def dedup_key(self) -> tuple:
        return (self.type, self.job_id, self.issues_fixed, self.error, self.status)


def parse_event(raw: Any) -> EventEnvelope:
    """
    Parse a raw push payload into an EventEnvelope.

    Args:
        raw: JSON text, bytes or an already-decoded dict

    Returns:
        EventEnvelope

    Raises:
        EventParseError: If the payload is not a JSON object with a string "type"
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise EventParseError(f"Event is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise EventParseError(f"Event must be a JSON object, got {type(raw).__name__}")

    try:
        return EventEnvelope.model_validate(raw)
    except ValidationError as e:
        raise EventParseError(f"Invalid event envelope: {e.errors()[0]['msg']}") from e
