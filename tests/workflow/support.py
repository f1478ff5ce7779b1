"""Shared test doubles for the workflow tests.

Provides a small order domain (OrderState, Order) plus factories for mocked
collaborators: repositories, handlers, resolvers, hooks and error handlers.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

from src.workflow.state.models import HandlerContext


class OrderState(str, Enum):
    NEW = "new"
    PAID = "paid"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Order:
    state: OrderState = OrderState.NEW
    id: str = field(default_factory=lambda: str(uuid4()))


def run_async(coro):
    """Run an async coroutine synchronously for testing."""
    return asyncio.run(coro)


def make_context(**extra: Any) -> HandlerContext:
    return HandlerContext(id=uuid4(), **extra)


def make_repository() -> AsyncMock:
    """Repository double recording update_state / update_failed calls."""
    repository = AsyncMock()
    repository.update_state.return_value = None
    repository.update_failed.return_value = None
    return repository


def make_handler(result: Optional[Any] = None) -> MagicMock:
    """Handler resolving with ``result``, or with its input when None."""
    handler = MagicMock()
    if result is None:
        handler.handle = AsyncMock(side_effect=lambda entity, context: entity)
    else:
        handler.handle = AsyncMock(return_value=result)
    return handler


def make_failing_handler(error: BaseException) -> MagicMock:
    handler = MagicMock()
    handler.handle = AsyncMock(side_effect=error)
    return handler


def make_handler_resolver(handler: Optional[MagicMock] = None) -> MagicMock:
    resolver = MagicMock()
    resolver.resolve_handler_for.return_value = handler or make_handler()
    return resolver


def make_failing_handler_resolver(error: BaseException) -> MagicMock:
    """Resolver whose handler raises ``error``."""
    return make_handler_resolver(make_failing_handler(error))


def make_rejecting_hook(error: BaseException) -> AsyncMock:
    return AsyncMock(side_effect=error)


def make_resolving_error_handler(entity: Any) -> AsyncMock:
    return AsyncMock(return_value=entity)


def make_rejecting_error_handler(error: BaseException) -> AsyncMock:
    return AsyncMock(side_effect=error)
