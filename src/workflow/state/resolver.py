"""Static handler resolution.

A StaticHandlerResolver maps a state to the handler responsible for leaving
it. Resolution order:

1. Dead state -> NoopTransitionHandler
2. Registered transition -> its DefaultTransitionHandler
3. Anything else -> HandlerResolutionError when strict, Noop when lenient

Strict resolution is the default. Unregistered states then surface as a
non-recoverable error, so the pipeline still parks the entity in its failed
state instead of crashing the caller. Lenient resolution supports partially
specified graphs where undeclared states are intentionally inert.
"""

import logging
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional

from src.workflow.errors import HandlerResolutionError
from src.workflow.state.handlers import DefaultTransitionHandler, NoopTransitionHandler
from src.workflow.state.models import HandlerResolver, TransitionHandler, state_value


logger = logging.getLogger(__name__)


class StaticHandlerResolver(HandlerResolver):
    """Immutable state-to-handler lookup built by StaticHandlerResolverBuilder.

    Attributes:
        strict: Whether unregistered states raise instead of resolving Noop.
        handlers: Read-only view of registered handlers by source state.
        dead_states: States that always resolve to the Noop handler.
    """

    def __init__(
        self,
        handlers: Mapping[Any, DefaultTransitionHandler],
        dead_states: FrozenSet[Any],
        strict: bool = True,
    ):
        self._handlers: Mapping[Any, DefaultTransitionHandler] = MappingProxyType(
            dict(handlers)
        )
        self._dead_states = frozenset(dead_states)
        self._strict = strict

    @property
    def strict(self) -> bool:
        return self._strict

    @property
    def handlers(self) -> Mapping[Any, DefaultTransitionHandler]:
        return self._handlers

    @property
    def dead_states(self) -> FrozenSet[Any]:
        return self._dead_states

    def resolve_handler_for(self, state: Any) -> TransitionHandler:
        """Return the handler responsible for transitions out of ``state``.

        Args:
            state: The entity's current state.

        Returns:
            NoopTransitionHandler for dead states (and unmapped states when
            lenient), otherwise the registered DefaultTransitionHandler.

        Raises:
            HandlerResolutionError: If strict and ``state`` is neither dead
                nor registered.
        """
        if state in self._dead_states:
            logger.debug(
                "Resolved dead state to noop handler",
                extra={"state": state_value(state)},
            )
            return NoopTransitionHandler

        handler = self._handlers.get(state)
        if handler is not None:
            logger.debug(
                "Resolved handler",
                extra={
                    "state": state_value(state),
                    "target_state": state_value(handler.target_state),
                },
            )
            return handler

        if self._strict:
            logger.warning(
                "No handler registered for state",
                extra={"state": state_value(state)},
            )
            raise HandlerResolutionError(state)

        logger.debug(
            "Unmapped state resolved to noop handler",
            extra={"state": state_value(state)},
        )
        return NoopTransitionHandler


class StaticHandlerResolverBuilder:
    """Fluent builder for StaticHandlerResolver.

    Every ``with_*`` call returns the builder. ``build`` snapshots the
    registrations, so later builder calls never affect a built resolver.

    Example:
        >>> resolver = (
        ...     create_static_handler_resolver()
        ...     .with_transition(OrderState.NEW, OrderState.PAID, charge_card)
        ...     .with_dead_states(OrderState.FAILED, OrderState.COMPLETED)
        ...     .build()
        ... )
    """

    def __init__(self, strict: Optional[bool] = None):
        self._default_strict = strict
        self._handlers: Dict[Any, DefaultTransitionHandler] = {}
        self._dead_states: set = set()

    def with_transition(
        self,
        from_state: Any,
        to_state: Any,
        handler: TransitionHandler,
    ) -> "StaticHandlerResolverBuilder":
        """Register ``handler`` for leaving ``from_state`` towards ``to_state``."""
        if from_state in self._handlers:
            logger.warning(
                "Replacing handler registration",
                extra={"state": state_value(from_state)},
            )
        self._handlers[from_state] = DefaultTransitionHandler(handler, to_state)
        return self

    def with_dead_states(self, *states: Any) -> "StaticHandlerResolverBuilder":
        """Register states that always resolve to the Noop handler."""
        self._dead_states.update(states)
        return self

    def build(self, strict: Optional[bool] = None) -> StaticHandlerResolver:
        """Freeze the registrations into a resolver.

        Args:
            strict: Resolution mode. Falls back to the mode given to the
                builder, then to strict.

        Returns:
            An immutable StaticHandlerResolver.
        """
        if strict is None:
            strict = True if self._default_strict is None else self._default_strict

        return StaticHandlerResolver(
            handlers=self._handlers,
            dead_states=frozenset(self._dead_states),
            strict=strict,
        )


def create_static_handler_resolver(
    strict: Optional[bool] = None,
) -> StaticHandlerResolverBuilder:
    """Start building a static handler resolver.

    Args:
        strict: Optional default resolution mode for ``build()``.

    Returns:
        A new StaticHandlerResolverBuilder.
    """
    return StaticHandlerResolverBuilder(strict=strict)
