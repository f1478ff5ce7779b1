"""Transition pipeline models and collaborator interfaces.

This module defines the data models shared by the resolvers and the pipeline:
- HandlerContext: Caller-supplied correlation context passed to every step
- TransitionRecord: Target state plus the handler that performs the change
- Terminal: Sentinel returned for states that accept no outgoing transition

It also declares the protocols the pipeline depends on:
- Entity: Anything with a ``state`` attribute
- TransitionHandler: ``async handle(entity, context) -> entity``
- HandlerResolver / TransitionResolver: State to handler/record lookups
- StateRepository: Persistence of successful and failed transitions

The models use Pydantic for validation, consistent with the pipeline's
approach in events/models.py and config.py.
"""

from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class HandlerContext(BaseModel):
    """Correlation context for a single ``handle`` call.

    The pipeline reads only ``id`` (for logging and events). Any extra fields
    supplied by the caller are preserved and passed through untouched to
    hooks and handlers.

    Attributes:
        id: Unique identifier used to trace one call across log entries.

    Example:
        >>> ctx = HandlerContext(request_source="webhook")
        >>> ctx.request_source
        'webhook'
    """

    model_config = ConfigDict(extra="allow")

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique identifier used for tracing",
    )


@runtime_checkable
class Entity(Protocol):
    """Domain object moved through the state graph.

    The caller owns the entity; the pipeline only reads ``state`` and hands
    the object to hooks, handlers and the repository.
    """

    state: Any


@runtime_checkable
class TransitionHandler(Protocol):
    """Capability that performs the work of leaving a state.

    Handlers may mutate and return the input entity or return a new
    instance. They may raise any exception, including
    NonRecoverablePipelineError.
    """

    async def handle(self, entity: Any, context: Any) -> Any:
        """Perform the transition and return the resulting entity."""
        ...


class TransitionRecord(BaseModel):
    """Immutable description of what happens when leaving a state.

    Attributes:
        target_state: The state the entity is expected to reach.
        handler: The handler that performs the transition.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    target_state: Any = Field(
        ...,
        description="State the entity is expected to reach",
    )

    handler: Any = Field(
        ...,
        description="TransitionHandler that performs the transition",
    )


class _TerminalType:
    """Type of the Terminal sentinel. Only one instance ever exists."""

    _instance: Optional["_TerminalType"] = None

    def __new__(cls) -> "_TerminalType":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "Terminal"

    def __reduce__(self) -> str:
        return "Terminal"


# Returned by transition resolvers for states with no outgoing transition.
# Compared by identity; never conflated with a missing registration.
Terminal = _TerminalType()


def is_terminal(resolution: Union[TransitionRecord, _TerminalType]) -> bool:
    """Check whether a transition resolution is the Terminal sentinel.

    Example:
        >>> is_terminal(Terminal)
        True
    """
    return resolution is Terminal


@runtime_checkable
class TransitionResolver(Protocol):
    """Maps an entity to its outgoing transition."""

    def resolve_transition_from(
        self, entity: Entity
    ) -> Union[TransitionRecord, _TerminalType]:
        """Return the record for the entity's current state, or Terminal."""
        ...


@runtime_checkable
class HandlerResolver(Protocol):
    """Maps a state to the handler responsible for leaving it.

    Implementations may return the handler directly or an awaitable
    resolving to it; the pipeline awaits either form.
    """

    def resolve_handler_for(self, state: Any) -> Any:
        """Return the handler for ``state``."""
        ...


@runtime_checkable
class StateRepository(Protocol):
    """Protocol defining the persistence collaborator of the pipeline.

    The pipeline calls at most one of these methods per ``handle`` call:
    - update_state after an unqualified success
    - update_failed when a non-recoverable error is absorbed

    Implementations should tolerate being called again for the same entity
    by the caller's own retry policy.
    """

    async def update_state(self, entity: Any, context: Any) -> None:
        """Persist the entity's new state after a successful transition."""
        ...

    async def update_failed(self, entity: Any, context: Any) -> None:
        """Persist that the entity failed and cannot proceed."""
        ...


# Hook signature. Hooks may return a value; the pipeline ignores it.
HookFn = Callable[[Any, Any], Awaitable[Optional[Any]]]

# Custom error handler signature: (error, entity, context) -> entity.
ErrorHandlerFn = Callable[[Exception, Any, Any], Awaitable[Any]]


def state_value(state: Any) -> Any:
    """Return a log- and storage-friendly representation of a state.

    Enum members are reduced to their value; anything else is returned
    unchanged.

    Example:
        >>> class Color(str, Enum):
        ...     RED = "red"
        >>> state_value(Color.RED)
        'red'
    """
    if isinstance(state, Enum):
        return state.value
    return state


def context_id(context: Any) -> Optional[str]:
    """Return the tracing identifier of a context as a string, if any."""
    if context is None:
        return None
    if isinstance(context, dict):
        value = context.get("id")
    else:
        value = getattr(context, "id", None)
    return str(value) if value is not None else None
