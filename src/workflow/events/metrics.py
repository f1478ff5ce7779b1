"""Prometheus metrics for pipeline observability.

Metrics Defined:
- workflow_transitions_total: Counter of persisted transitions
- workflow_failures_total: Counter of entities parked as failed
- workflow_errors_total: Counter of rejected or custom-handled calls
- workflow_handle_duration_seconds: Histogram of time spent in ``handle``

The MetricsEventEmitter integrates with the event emission system to update
these metrics from pipeline events.
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from src.workflow.events.emitter import EventEmitter
from src.workflow.events.models import EventType, PipelineEvent


logger = logging.getLogger(__name__)


# Handlers are usually quick domain calls; covers 5ms to 1 minute
DEFAULT_DURATION_BUCKETS = (
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
    60.0,
)


def _label(value: object) -> str:
    return "unknown" if value is None else str(value)


class TransitionMetrics:
    """Container for all pipeline Prometheus metrics.

    Metrics:
        transitions_total: Persisted transitions.
            Labels: from_state, to_state

        failures_total: Entities parked in the failed state.
            Labels: state

        errors_total: Calls that rejected or were handed to a custom
            error handler.
            Labels: state, error_type

        handle_duration_seconds: Time spent inside ``handle``.
            Labels: state

    Example:
        >>> metrics = TransitionMetrics(registry=CollectorRegistry())
        >>> metrics.record_transition("new", "paid")
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize pipeline metrics.

        Args:
            registry: Optional Prometheus registry. If None, uses the
                      default REGISTRY. Pass a custom registry for testing.
        """
        self.registry = registry or REGISTRY

        self.transitions_total = Counter(
            "workflow_transitions_total",
            "Total number of transitions persisted by the pipeline",
            labelnames=["from_state", "to_state"],
            registry=self.registry,
        )

        self.failures_total = Counter(
            "workflow_failures_total",
            "Total number of entities parked in the failed state",
            labelnames=["state"],
            registry=self.registry,
        )

        self.errors_total = Counter(
            "workflow_errors_total",
            "Total number of handle calls that ended with an error",
            labelnames=["state", "error_type"],
            registry=self.registry,
        )

        self.handle_duration_seconds = Histogram(
            "workflow_handle_duration_seconds",
            "Time spent handling a single transition in seconds",
            labelnames=["state"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

    def record_transition(self, from_state: object, to_state: object) -> None:
        self.transitions_total.labels(
            from_state=_label(from_state),
            to_state=_label(to_state),
        ).inc()

    def record_failure(self, state: object) -> None:
        self.failures_total.labels(state=_label(state)).inc()

    def record_error(self, state: object, error_type: object) -> None:
        self.errors_total.labels(
            state=_label(state),
            error_type=_label(error_type),
        ).inc()

    def record_duration(self, state: object, duration_seconds: float) -> None:
        self.handle_duration_seconds.labels(state=_label(state)).observe(
            duration_seconds
        )


_default_metrics: Optional[TransitionMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> TransitionMetrics:
    """Return the process-wide metrics, or fresh metrics bound to ``registry``.

    Collectors can be registered only once per registry, so the default
    registry is served by a single shared TransitionMetrics.
    """
    global _default_metrics

    if registry is not None:
        return TransitionMetrics(registry=registry)
    if _default_metrics is None:
        _default_metrics = TransitionMetrics()
    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Render ``registry`` (default: the global one) in Prometheus text format."""
    return generate_latest(registry or REGISTRY)


class MetricsEventEmitter(EventEmitter):
    """Feeds pipeline events into TransitionMetrics.

    TRANSITION, FAILURE and ERROR each bump their own counter, labelled by
    the state the call started from. A ``duration_seconds`` detail, present
    on every event the pipeline emits, is observed in the histogram.

    Recording errors propagate; the pipeline and CompositeEventEmitter both
    log and drop sink failures.
    """

    def __init__(
        self,
        metrics: Optional[TransitionMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        self._metrics = metrics if metrics is not None else get_metrics(registry)

    @property
    def metrics(self) -> TransitionMetrics:
        return self._metrics

    async def emit(self, event: PipelineEvent) -> None:
        state = event.from_state

        if event.event_type == EventType.TRANSITION:
            self._metrics.record_transition(state, event.to_state)
        elif event.event_type == EventType.FAILURE:
            self._metrics.record_failure(state)
        elif event.event_type == EventType.ERROR:
            self._metrics.record_error(state, event.details.get("error_type"))
        else:
            logger.debug("No metric for event type %s", event.event_type)

        duration = event.details.get("duration_seconds")
        if duration is not None:
            self._metrics.record_duration(state, float(duration))
