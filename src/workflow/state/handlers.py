"""Built-in transition handler variants.

- NoopTransitionHandler: identity handler used for dead states and, under
  lenient resolution, for unmapped states
- PassthroughTransitionHandler: identity handler used by passthrough
  transition records, whose target state differs from the current one
- DefaultTransitionHandler: wraps a domain handler together with the target
  state registered for it

Noop and passthrough are stateless; a single shared instance of each is
exported and compared by identity.
"""

from typing import Any

from src.workflow.state.models import TransitionHandler, state_value


class _NoopTransitionHandler:
    """Handler that resolves with the input entity unchanged."""

    async def handle(self, entity: Any, context: Any) -> Any:
        return entity

    def __repr__(self) -> str:
        return "NoopTransitionHandler"


class _PassthroughTransitionHandler:
    """Identity handler for state changes that carry no custom logic."""

    async def handle(self, entity: Any, context: Any) -> Any:
        return entity

    def __repr__(self) -> str:
        return "PassthroughTransitionHandler"


NoopTransitionHandler = _NoopTransitionHandler()
PassthroughTransitionHandler = _PassthroughTransitionHandler()


class DefaultTransitionHandler:
    """Domain handler paired with the state it is registered to reach.

    The handler delegates to the wrapped domain handler. Making sure the
    returned entity actually carries ``target_state`` is the domain
    handler's job; this wrapper does not check or rewrite it.

    Attributes:
        handler: The wrapped domain handler.
        target_state: The state registered as the outcome of this handler.

    Example:
        >>> handler = DefaultTransitionHandler(ship_order, OrderState.SHIPPED)
        >>> handler.target_state
        <OrderState.SHIPPED: 'shipped'>
    """

    __slots__ = ("_handler", "_target_state")

    def __init__(self, handler: TransitionHandler, target_state: Any):
        self._handler = handler
        self._target_state = target_state

    @property
    def handler(self) -> TransitionHandler:
        return self._handler

    @property
    def target_state(self) -> Any:
        return self._target_state

    async def handle(self, entity: Any, context: Any) -> Any:
        """Run the wrapped domain handler and return its entity."""
        return await self._handler.handle(entity, context)

    def __repr__(self) -> str:
        return (
            f"DefaultTransitionHandler(handler={self._handler!r}, "
            f"target_state={state_value(self._target_state)!r})"
        )
