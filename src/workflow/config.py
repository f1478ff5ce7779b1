"""Workflow configuration using pydantic-settings.

This module defines the WorkflowSettings class that reads configuration from
environment variables with the WORKFLOW_ prefix. Every field has a default,
so a pipeline can be assembled without any environment set.
"""

import logging
from typing import List, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.workflow.events.emitter import EventSinkType, create_event_emitter
from src.workflow.pipeline import PipelineBuilder, create_pipeline
from src.workflow.state.models import HandlerResolver, StateRepository
from src.workflow.state.repository import PostgresStateRepository
from src.workflow.state.resolver import (
    StaticHandlerResolverBuilder,
    create_static_handler_resolver,
)


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET")


class WorkflowSettings(BaseSettings):
    """Workflow configuration from environment variables.

    All environment variables are prefixed with WORKFLOW_ (e.g.,
    WORKFLOW_STRICT_RESOLUTION). List values such as ``event_sinks`` are
    given as JSON (e.g., ``'["logging", "metrics"]'``).
    """

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------
    # Unregistered states raise instead of resolving to the noop handler
    strict_resolution: bool = True

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------
    event_sinks: List[EventSinkType] = [EventSinkType.LOGGING]

    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Database Configuration
    # -------------------------------------------------------------------------
    # PostgreSQL connection string; unset when using another repository
    database_url: Optional[str] = None

    db_min_pool_size: int = 2

    db_max_pool_size: int = 10

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that the log level is a known logging level name."""
        level = v.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be a logging level name, got {v!r}")
        return level

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate that the database URL, when set, is a PostgreSQL URL."""
        if v is None:
            return v
        if not v.strip():
            raise ValueError("database_url cannot be empty")
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError(
                "database_url must start with postgresql:// or postgres://"
            )
        return v

    @field_validator("db_min_pool_size", "db_max_pool_size")
    @classmethod
    def validate_pool_size(cls, v: int) -> int:
        """Validate that pool sizes are positive."""
        if v < 1:
            raise ValueError("pool sizes must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_pool_bounds(self) -> "WorkflowSettings":
        """Validate that the minimum pool size does not exceed the maximum."""
        if self.db_min_pool_size > self.db_max_pool_size:
            raise ValueError("db_min_pool_size cannot exceed db_max_pool_size")
        return self


def get_settings() -> WorkflowSettings:
    """Create and return a WorkflowSettings instance.

    Raises:
        pydantic.ValidationError: If any environment value is invalid.
    """
    return WorkflowSettings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for processes that run the pipeline.

    Args:
        level: Logging level name. Defaults to ``WORKFLOW_LOG_LEVEL``.
    """
    if level is None:
        level = get_settings().log_level
    logging.basicConfig(level=level, format=LOG_FORMAT)


def create_handler_resolver_from_settings(
    settings: WorkflowSettings,
) -> StaticHandlerResolverBuilder:
    """Start a handler resolver builder whose ``build()`` honours
    ``strict_resolution``.
    """
    return create_static_handler_resolver(strict=settings.strict_resolution)


def create_pipeline_from_settings(
    settings: WorkflowSettings,
    handler_resolver: HandlerResolver,
    state_repository: StateRepository,
) -> PipelineBuilder:
    """Start a pipeline builder wired from settings.

    The returned builder already carries the repository, the resolver and
    the event emitter for the configured sinks; hooks and a custom error
    handler can still be added before ``build()``.

    Example:
        >>> settings = get_settings()
        >>> resolver = (
        ...     create_handler_resolver_from_settings(settings)
        ...     .with_transition(OrderState.NEW, OrderState.PAID, charge_card)
        ...     .build()
        ... )
        >>> pipeline = create_pipeline_from_settings(
        ...     settings, resolver, InMemoryStateRepository()
        ... ).build()
    """
    return (
        create_pipeline()
        .with_state_repository(state_repository)
        .with_handler_resolver(handler_resolver)
        .with_event_emitter(create_event_emitter(settings.event_sinks))
    )


def create_postgres_repository(settings: WorkflowSettings) -> PostgresStateRepository:
    """Create a (not yet connected) PostgreSQL repository from settings.

    Raises:
        ValueError: If ``database_url`` is not configured.
    """
    if settings.database_url is None:
        raise ValueError("WORKFLOW_DATABASE_URL is required for PostgreSQL persistence")

    return PostgresStateRepository(
        settings.database_url,
        min_pool_size=settings.db_min_pool_size,
        max_pool_size=settings.db_max_pool_size,
    )
