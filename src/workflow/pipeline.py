"""Transition pipeline orchestrating a single ``handle(entity, context)`` call.

Each call runs these awaited steps in order, with no internal parallelism:

    on_before_handler -> resolve handler -> handler.handle
    -> on_after_handler -> state_repository.update_state

Any exception raised by a step stops the sequence and goes through a single
escalation policy (``Pipeline._escalate``):

1. A custom error handler, when configured, owns the outcome. Its result is
   returned, its exception propagates, and the pipeline never touches the
   repository.
2. Otherwise non-recoverable errors (including strict resolution failures)
   park the entity via ``state_repository.update_failed`` and the call
   resolves with the entity the caller passed in.
3. Otherwise the original error propagates to the caller.

The after-hook runs before persistence so that ``update_state`` happens only
when every step succeeded, and never together with ``update_failed``.

Hooks observe the entity; whatever they return is ignored. The call resolves
with the handler's output on success and with the caller's own entity when a
non-recoverable error is absorbed.

Source:
- src/workflow/state/models.py (StateRepository, HandlerResolver)
- src/workflow/errors.py (ErrorKind, classify_error)
- src/workflow/events/emitter.py (EventEmitter)
"""

import inspect
import logging
import time
from typing import Any, Dict, List, Optional

from src.workflow.errors import PipelineConfigurationError, classify_error
from src.workflow.events.emitter import EventEmitter, NullEventEmitter
from src.workflow.events.models import EventType, PipelineEvent
from src.workflow.state.models import (
    Entity,
    ErrorHandlerFn,
    HandlerResolver,
    HookFn,
    StateRepository,
    context_id,
    state_value,
)


logger = logging.getLogger(__name__)


async def _noop_hook(entity: Any, context: Any) -> None:
    return None


class Pipeline:
    """Orchestrates one transition attempt per ``handle`` call.

    Pipelines are assembled with ``create_pipeline()`` and are safe to share
    between concurrent calls: they hold no per-call state. Per-entity mutual
    exclusion, retries and timeouts are the caller's concern.

    Attributes:
        state_repository: Persists successful and failed transitions.
        handler_resolver: Supplies the handler for the entity's state.
        on_before_handler: Hook awaited before the handler.
        on_after_handler: Hook awaited after the handler, before persistence.
        error_handler: Optional custom error handler.
        event_emitter: Observability sink for call outcomes.

    Example:
        >>> pipeline = (
        ...     create_pipeline()
        ...     .with_state_repository(repository)
        ...     .with_handler_resolver(resolver)
        ...     .build()
        ... )
        >>> order = await pipeline.handle(order, HandlerContext())
    """

    def __init__(
        self,
        state_repository: StateRepository,
        handler_resolver: HandlerResolver,
        on_before_handler: HookFn = _noop_hook,
        on_after_handler: HookFn = _noop_hook,
        error_handler: Optional[ErrorHandlerFn] = None,
        event_emitter: Optional[EventEmitter] = None,
    ):
        self.state_repository = state_repository
        self.handler_resolver = handler_resolver
        self.on_before_handler = on_before_handler
        self.on_after_handler = on_after_handler
        self.error_handler = error_handler
        self.event_emitter = event_emitter or NullEventEmitter()

    async def handle(self, entity: Entity, context: Any) -> Entity:
        """Run one transition attempt for ``entity``.

        Args:
            entity: Caller-owned object with a ``state`` attribute.
            context: Correlation context passed unchanged to every step.

        Returns:
            The handler's resulting entity on success, the original entity
            when a non-recoverable error was absorbed, or whatever the custom
            error handler returned.

        Raises:
            Exception: The original recoverable error when no custom error
                handler is configured, or any error raised by the custom
                error handler or by ``update_failed``.
        """
        started = time.monotonic()
        from_state = state_value(getattr(entity, "state", None))
        ctx_id = context_id(context)

        # Hook return values are ignored; escalation always sees the caller's entity.
        try:
            await self.on_before_handler(entity, context)

            handler = self.handler_resolver.resolve_handler_for(entity.state)
            if inspect.isawaitable(handler):
                handler = await handler

            result = await handler.handle(entity, context)

            await self.on_after_handler(result, context)

            await self.state_repository.update_state(result, context)
        except Exception as error:
            return await self._escalate(error, entity, context, from_state, started)

        to_state = state_value(getattr(result, "state", None))
        logger.info(
            "Transition completed",
            extra={
                "context_id": ctx_id,
                "from_state": from_state,
                "to_state": to_state,
            },
        )
        await self._emit(
            PipelineEvent(
                event_type=EventType.TRANSITION,
                context_id=ctx_id,
                from_state=from_state,
                to_state=to_state,
                details={"duration_seconds": time.monotonic() - started},
            )
        )
        return result

    async def _escalate(
        self,
        error: Exception,
        entity: Entity,
        context: Any,
        from_state: Any,
        started: float,
    ) -> Any:
        """Apply the error policy to a failed step. The only place errors
        are classified.
        """
        kind = classify_error(error)
        ctx_id = context_id(context)
        details: Dict[str, Any] = {
            "error_message": str(error),
            "error_type": type(error).__name__,
            "error_kind": kind.value,
        }

        if self.error_handler is not None:
            logger.info(
                "Delegating error to custom error handler",
                extra={"context_id": ctx_id, "from_state": from_state, **details},
            )
            await self._emit(
                PipelineEvent(
                    event_type=EventType.ERROR,
                    context_id=ctx_id,
                    from_state=from_state,
                    details={
                        **details,
                        "custom_error_handler": True,
                        "duration_seconds": time.monotonic() - started,
                    },
                )
            )
            return await self.error_handler(error, entity, context)

        if kind.parks_entity:
            logger.warning(
                "Non-recoverable error, parking entity in failed state",
                extra={"context_id": ctx_id, "from_state": from_state, **details},
            )
            await self.state_repository.update_failed(entity, context)
            await self._emit(
                PipelineEvent(
                    event_type=EventType.FAILURE,
                    context_id=ctx_id,
                    from_state=from_state,
                    details={
                        **details,
                        "duration_seconds": time.monotonic() - started,
                    },
                )
            )
            return entity

        logger.error(
            "Transition failed",
            extra={"context_id": ctx_id, "from_state": from_state, **details},
        )
        await self._emit(
            PipelineEvent(
                event_type=EventType.ERROR,
                context_id=ctx_id,
                from_state=from_state,
                details={
                    **details,
                    "custom_error_handler": False,
                    "duration_seconds": time.monotonic() - started,
                },
            )
        )
        raise error

    async def _emit(self, event: PipelineEvent) -> None:
        """Emit an event without letting sink failures reach the caller."""
        try:
            await self.event_emitter.emit(event)
        except Exception as e:
            logger.error(
                "Failed to emit pipeline event",
                extra={
                    "event_type": event.event_type.value,
                    "context_id": event.context_id,
                    "error": str(e),
                },
            )


class PipelineBuilder:
    """Fluent builder for Pipeline.

    The state repository and the handler resolver are required; hooks, the
    custom error handler and the event emitter are optional.
    """

    def __init__(self) -> None:
        self._state_repository: Optional[StateRepository] = None
        self._handler_resolver: Optional[HandlerResolver] = None
        self._on_before_handler: HookFn = _noop_hook
        self._on_after_handler: HookFn = _noop_hook
        self._error_handler: Optional[ErrorHandlerFn] = None
        self._event_emitter: Optional[EventEmitter] = None

    def with_state_repository(self, repository: StateRepository) -> "PipelineBuilder":
        self._state_repository = repository
        return self

    def with_handler_resolver(self, resolver: HandlerResolver) -> "PipelineBuilder":
        self._handler_resolver = resolver
        return self

    def with_on_before_handler(self, hook: HookFn) -> "PipelineBuilder":
        self._on_before_handler = hook
        return self

    def with_on_after_handler(self, hook: HookFn) -> "PipelineBuilder":
        self._on_after_handler = hook
        return self

    def with_error_handler(self, error_handler: ErrorHandlerFn) -> "PipelineBuilder":
        """Take over error handling, including any repository interaction."""
        self._error_handler = error_handler
        return self

    def with_event_emitter(self, emitter: EventEmitter) -> "PipelineBuilder":
        self._event_emitter = emitter
        return self

    def build(self) -> Pipeline:
        """Validate the configuration and return a Pipeline.

        Raises:
            PipelineConfigurationError: If the state repository or the
                handler resolver is missing.
        """
        missing: List[str] = []
        if self._state_repository is None:
            missing.append("state_repository")
        if self._handler_resolver is None:
            missing.append("handler_resolver")
        if missing:
            raise PipelineConfigurationError(missing)

        return Pipeline(
            state_repository=self._state_repository,
            handler_resolver=self._handler_resolver,
            on_before_handler=self._on_before_handler,
            on_after_handler=self._on_after_handler,
            error_handler=self._error_handler,
            event_emitter=self._event_emitter,
        )


def create_pipeline() -> PipelineBuilder:
    """Start building a pipeline."""
    return PipelineBuilder()
