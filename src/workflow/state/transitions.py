"""Static transition resolution.

A StaticTransitionResolver maps an entity's current state to a
TransitionRecord, or to the Terminal sentinel for states that accept no
outgoing transition. Terminal registration takes precedence over any
transition registered for the same state.

This is a lower-level primitive than the handler resolver: there is no
lenient mode, and resolving an unregistered, non-terminal state raises
TransitionNotFoundError.
"""

import logging
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Union

from src.workflow.errors import TransitionNotFoundError
from src.workflow.state.handlers import PassthroughTransitionHandler
from src.workflow.state.models import (
    Entity,
    Terminal,
    TransitionHandler,
    TransitionRecord,
    TransitionResolver,
    _TerminalType,
    state_value,
)


logger = logging.getLogger(__name__)


class StaticTransitionResolver(TransitionResolver):
    """Immutable state-to-transition lookup.

    Attributes:
        records: Read-only view of transition records by source state.
        terminal_states: States that always resolve to Terminal.
    """

    def __init__(
        self,
        records: Mapping[Any, TransitionRecord],
        terminal_states: FrozenSet[Any],
    ):
        self._records: Mapping[Any, TransitionRecord] = MappingProxyType(dict(records))
        self._terminal_states = frozenset(terminal_states)

    @property
    def records(self) -> Mapping[Any, TransitionRecord]:
        return self._records

    @property
    def terminal_states(self) -> FrozenSet[Any]:
        return self._terminal_states

    def resolve_transition_from(
        self, entity: Entity
    ) -> Union[TransitionRecord, _TerminalType]:
        """Resolve the outgoing transition for the entity's current state.

        Args:
            entity: Any object with a ``state`` attribute.

        Returns:
            Terminal if the state is terminal, otherwise its TransitionRecord.

        Raises:
            TransitionNotFoundError: If the state is neither terminal nor
                registered.
        """
        state = entity.state

        if state in self._terminal_states:
            return Terminal

        record = self._records.get(state)
        if record is None:
            raise TransitionNotFoundError(state)

        return record


class StaticTransitionResolverBuilder:
    """Fluent builder for StaticTransitionResolver.

    Example:
        >>> resolver = (
        ...     create_transition_resolver_builder()
        ...     .with_transition(OrderState.NEW, OrderState.PAID, charge_card)
        ...     .with_passthrough(OrderState.PAID, OrderState.PACKING)
        ...     .with_terminal_states(OrderState.FAILED, OrderState.COMPLETED)
        ...     .build()
        ... )
    """

    def __init__(self) -> None:
        self._records: Dict[Any, TransitionRecord] = {}
        self._terminal_states: set = set()

    def _register(self, from_state: Any, record: TransitionRecord) -> None:
        if from_state in self._records:
            logger.warning(
                "Replacing transition registration",
                extra={
                    "state": state_value(from_state),
                    "target_state": state_value(record.target_state),
                },
            )
        self._records[from_state] = record

    def with_transition(
        self,
        from_state: Any,
        to_state: Any,
        handler: TransitionHandler,
    ) -> "StaticTransitionResolverBuilder":
        """Register an explicit transition from ``from_state`` to ``to_state``."""
        self._register(
            from_state,
            TransitionRecord(target_state=to_state, handler=handler),
        )
        return self

    def with_passthrough(
        self,
        from_state: Any,
        to_state: Any,
    ) -> "StaticTransitionResolverBuilder":
        """Register a state change that carries no transformation logic."""
        self._register(
            from_state,
            TransitionRecord(
                target_state=to_state,
                handler=PassthroughTransitionHandler,
            ),
        )
        return self

    def with_terminal_states(self, *states: Any) -> "StaticTransitionResolverBuilder":
        """Register states that always resolve to Terminal."""
        self._terminal_states.update(states)
        return self

    def build(self) -> StaticTransitionResolver:
        """Freeze the registrations into an immutable resolver."""
        return StaticTransitionResolver(
            records=self._records,
            terminal_states=frozenset(self._terminal_states),
        )


def create_transition_resolver_builder() -> StaticTransitionResolverBuilder:
    """Start building a static transition resolver."""
    return StaticTransitionResolverBuilder()
