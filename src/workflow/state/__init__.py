"""State resolution, handler variants and persistence.

This module maps entity states to the work performed when leaving them:
- Handler resolution: state -> handler, strict or lenient
- Transition resolution: entity -> TransitionRecord or Terminal
- Built-in handlers: Noop, Passthrough, Default
- Repositories: in-memory and PostgreSQL persistence of outcomes
"""

from src.workflow.state.handlers import (
    DefaultTransitionHandler,
    NoopTransitionHandler,
    PassthroughTransitionHandler,
)
from src.workflow.state.models import (
    Entity,
    ErrorHandlerFn,
    HandlerContext,
    HandlerResolver,
    HookFn,
    StateRepository,
    Terminal,
    TransitionHandler,
    TransitionRecord,
    TransitionResolver,
    is_terminal,
)
from src.workflow.state.repository import (
    DatabaseError,
    InMemoryStateRepository,
    PostgresStateRepository,
    StoredEntityState,
)
from src.workflow.state.resolver import (
    StaticHandlerResolver,
    StaticHandlerResolverBuilder,
    create_static_handler_resolver,
)
from src.workflow.state.transitions import (
    StaticTransitionResolver,
    StaticTransitionResolverBuilder,
    create_transition_resolver_builder,
)

__all__ = [
    # Models
    "Entity",
    "HandlerContext",
    "Terminal",
    "TransitionRecord",
    "is_terminal",
    # Interfaces
    "ErrorHandlerFn",
    "HandlerResolver",
    "HookFn",
    "StateRepository",
    "TransitionHandler",
    "TransitionResolver",
    # Handlers
    "DefaultTransitionHandler",
    "NoopTransitionHandler",
    "PassthroughTransitionHandler",
    # Resolvers
    "StaticHandlerResolver",
    "StaticHandlerResolverBuilder",
    "create_static_handler_resolver",
    "StaticTransitionResolver",
    "StaticTransitionResolverBuilder",
    "create_transition_resolver_builder",
    # Repositories
    "DatabaseError",
    "InMemoryStateRepository",
    "PostgresStateRepository",
    "StoredEntityState",
]
