"""Event sinks for pipeline observability.

The pipeline reports how each ``handle`` call ended through an EventEmitter.
Emitters here:

- LoggingEventEmitter: one structured log line per outcome
- CompositeEventEmitter: fan-out to several sinks, isolating their failures
- NullEventEmitter: the pipeline's default when nothing is configured

The Prometheus sink lives in metrics.py and is wired in by
``create_event_emitter`` when the METRICS sink is requested.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Iterable, List, Optional

from src.workflow.events.models import EventType, PipelineEvent


logger = logging.getLogger(__name__)


class EventSinkType(str, Enum):
    """Event sinks selectable through configuration.

    Attributes:
        LOGGING: Structured log entries.
        METRICS: Prometheus counters and a duration histogram.
    """

    LOGGING = "logging"
    METRICS = "metrics"


class EventEmitter(ABC):
    """Receives one PipelineEvent per ``handle`` call.

    ``emit`` may raise; the pipeline logs the failure and carries on, so a
    broken sink never changes what ``handle`` returns.
    """

    @abstractmethod
    async def emit(self, event: PipelineEvent) -> None:
        """Publish ``event`` to the sink."""

    async def close(self) -> None:
        """Release sink resources. Nothing to release by default."""


# Message template and level per outcome. Templates are filled from the event
# fields so the human-readable line matches the structured ``extra`` fields.
_OUTCOME_FORMATS: Dict[EventType, tuple] = {
    EventType.TRANSITION: (logging.INFO, "Entity moved from %s to %s"),
    EventType.FAILURE: (logging.WARNING, "Entity parked as failed in %s: %s"),
    EventType.ERROR: (logging.ERROR, "Transition attempt from %s rejected: %s"),
}


class LoggingEventEmitter(EventEmitter):
    """Writes each event as a single log record.

    TRANSITION is logged at INFO, FAILURE at WARNING and ERROR at ERROR. All
    event fields (see ``PipelineEvent.to_log_dict``) are attached as
    ``extra`` for log aggregation.

    Example:
        >>> emitter = LoggingEventEmitter("orders.workflow")
        >>> await emitter.emit(event)
        # INFO - Entity moved from new to paid
    """

    def __init__(self, logger_name: Optional[str] = None):
        self._logger = logging.getLogger(logger_name) if logger_name else logger

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    async def emit(self, event: PipelineEvent) -> None:
        level, template = _OUTCOME_FORMATS.get(
            event.event_type, (logging.INFO, "Pipeline event from %s: %s")
        )

        if event.event_type == EventType.TRANSITION:
            second = event.to_state
        else:
            second = event.details.get("error_message", "")

        self._logger.log(
            level,
            template,
            event.from_state,
            second,
            extra=event.to_log_dict(),
        )


class CompositeEventEmitter(EventEmitter):
    """Forwards every event to each child emitter in order.

    A child that raises is logged and skipped; the remaining children still
    receive the event. ``failures`` counts how many child emits have failed
    since construction.

    Example:
        >>> emitter = CompositeEventEmitter(
        ...     [LoggingEventEmitter(), MetricsEventEmitter()]
        ... )
    """

    def __init__(self, emitters: Optional[Iterable[EventEmitter]] = None):
        self._emitters: List[EventEmitter] = list(emitters or [])
        self.failures = 0

    @property
    def emitters(self) -> List[EventEmitter]:
        return list(self._emitters)

    def add_emitter(self, emitter: EventEmitter) -> None:
        self._emitters.append(emitter)

    def remove_emitter(self, emitter: EventEmitter) -> bool:
        """Detach ``emitter``; returns False if it was not attached."""
        if emitter not in self._emitters:
            return False
        self._emitters.remove(emitter)
        return True

    async def emit(self, event: PipelineEvent) -> None:
        for child in self._emitters:
            try:
                await child.emit(event)
            except Exception as e:
                self.failures += 1
                logger.error(
                    "Event sink %s failed",
                    type(child).__name__,
                    extra={
                        "sink": type(child).__name__,
                        "event_type": event.event_type.value,
                        "context_id": event.context_id,
                        "error": str(e),
                    },
                )

    async def close(self) -> None:
        for child in self._emitters:
            try:
                await child.close()
            except Exception as e:
                logger.error(
                    "Failed to close event sink %s",
                    type(child).__name__,
                    extra={"sink": type(child).__name__, "error": str(e)},
                )


class NullEventEmitter(EventEmitter):
    async def emit(self, event: PipelineEvent) -> None:
        return None


def _build_sink(sink_type: EventSinkType, logger_name: Optional[str]) -> Optional[EventEmitter]:
    if sink_type == EventSinkType.LOGGING:
        return LoggingEventEmitter(logger_name)
    if sink_type == EventSinkType.METRICS:
        # metrics.py imports this module
        from src.workflow.events.metrics import MetricsEventEmitter

        return MetricsEventEmitter()
    logger.warning("Unknown event sink %r ignored", sink_type)
    return None


def create_event_emitter(
    sink_types: Optional[Iterable[EventSinkType]] = None,
    logger_name: Optional[str] = None,
) -> EventEmitter:
    """Build the emitter for a list of configured sinks.

    Duplicate sink types are collapsed. No sinks (or only unknown ones)
    falls back to logging.

    Args:
        sink_types: Sinks to enable, e.g. ``WorkflowSettings.event_sinks``.
        logger_name: Logger used by the logging sink.

    Returns:
        The single emitter when one sink remains, otherwise a
        CompositeEventEmitter over all of them.
    """
    emitters: List[EventEmitter] = []
    for sink_type in dict.fromkeys(sink_types or ()):
        sink = _build_sink(sink_type, logger_name)
        if sink is not None:
            emitters.append(sink)

    if not emitters:
        return LoggingEventEmitter(logger_name)
    if len(emitters) == 1:
        return emitters[0]
    return CompositeEventEmitter(emitters)
