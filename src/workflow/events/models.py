"""Pipeline event models for observability.

This module defines the data models for pipeline events, including:
- EventType: Enum of all event types emitted by the pipeline
- PipelineEvent: Structured event with all required metadata

One event is emitted per ``handle`` call, describing how it ended. Events
never influence the outcome of the call itself.

The models use Pydantic for validation, consistent with the pipeline's
approach in state/models.py and config.py.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted by the transition pipeline.

    Event Categories:
        TRANSITION: The handler ran and the new state was persisted.
            Used for tracking entity progression and throughput.

        FAILURE: A non-recoverable error was absorbed and the entity was
            persisted as failed. Used for alerting on parked entities.

        ERROR: The call rejected with an error, or a custom error handler
            took over. Used for debugging failed attempts.
    """

    TRANSITION = "transition"
    FAILURE = "failure"
    ERROR = "error"


class PipelineEvent(BaseModel):
    """Structured event emitted by the transition pipeline.

    Attributes:
        event_type: How the ``handle`` call ended.
        context_id: Tracing identifier of the handler context, if any.
        from_state: The entity's state when the call started.
        to_state: The entity's state after a successful transition.
        timestamp: When the event occurred (UTC timezone).
        details: Additional context specific to the event type.

    Details Field Conventions:
        For all events:
            - duration_seconds: Time spent inside ``handle``

        For FAILURE and ERROR events:
            - error_message: Human-readable error description
            - error_type: Exception class name
            - error_kind: ErrorKind value of the triggering error

        For ERROR events:
            - custom_error_handler: Whether a custom error handler was used

    Example:
        >>> event = PipelineEvent(
        ...     event_type=EventType.TRANSITION,
        ...     context_id="5d0c5f2e-...",
        ...     from_state="new",
        ...     to_state="paid",
        ... )
    """

    event_type: EventType = Field(
        ...,
        description="How the handle call ended",
    )

    context_id: Optional[str] = Field(
        default=None,
        description="Tracing identifier of the handler context",
    )

    from_state: Optional[Any] = Field(
        default=None,
        description="Entity state when the call started",
    )

    to_state: Optional[Any] = Field(
        default=None,
        description="Entity state after a successful transition",
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    def to_log_dict(self) -> Dict[str, Any]:
        """Convert event to a flat dictionary suitable for structured logging.

        Returns:
            Dict[str, Any]: Flat dictionary representation of the event.

        Example:
            >>> event = PipelineEvent(event_type=EventType.ERROR, from_state="new")
            >>> event.to_log_dict()["event_type"]
            'error'
        """
        return {
            "event_type": self.event_type.value,
            "context_id": self.context_id,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
