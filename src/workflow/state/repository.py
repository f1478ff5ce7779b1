"""State repositories for persisting transition outcomes.

This module provides two implementations of the StateRepository protocol:
- InMemoryStateRepository: dict-backed, for tests and single-process use
- PostgresStateRepository: asyncpg-backed, with connection pooling

Both record, per entity, the current state, whether the entity was parked as
failed, and the context id of the last write. Writes are upserts, so a
caller retrying ``handle`` for the same entity never produces duplicates.

Source:
- src/workflow/state/models.py (StateRepository protocol)
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, Optional

import asyncpg
from pydantic import BaseModel, Field

from src.workflow.errors import PipelineError
from src.workflow.state.models import context_id, state_value


logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS entity_states (
    entity_id   TEXT PRIMARY KEY,
    state       TEXT NOT NULL,
    failed      BOOLEAN NOT NULL DEFAULT FALSE,
    context_id  TEXT,
    updated_at  TIMESTAMPTZ NOT NULL
)
"""


class DatabaseError(PipelineError):
    """Raised when a database operation fails.

    Recoverable: the pipeline propagates it to the caller.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
    ):
        self.original_error = original_error
        super().__init__(message)


class StoredEntityState(BaseModel):
    """Snapshot of what a repository holds for one entity.

    Attributes:
        entity_id: Identifier of the entity.
        state: Last persisted state value.
        failed: Whether the entity was parked as failed.
        context_id: Tracing id of the call that last wrote the record.
        updated_at: When the record was last written (UTC).
    """

    entity_id: str = Field(..., min_length=1)
    state: Any = None
    failed: bool = False
    context_id: Optional[str] = None
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


def _default_id_getter(entity: Any) -> str:
    return str(entity.id)


class InMemoryStateRepository:
    """In-memory implementation of the StateRepository protocol.

    Args:
        id_getter: Extracts the entity identifier. Defaults to ``entity.id``.
        failed_state: Optional state written by ``update_failed``. When not
            set, the entity keeps its current state and is only flagged.
    """

    def __init__(
        self,
        id_getter: Callable[[Any], str] = _default_id_getter,
        failed_state: Any = None,
    ) -> None:
        self._id_getter = id_getter
        self._failed_state = failed_state
        self._records: Dict[str, StoredEntityState] = {}

    async def update_state(self, entity: Any, context: Any) -> None:
        entity_id = self._id_getter(entity)
        self._records[entity_id] = StoredEntityState(
            entity_id=entity_id,
            state=state_value(entity.state),
            failed=False,
            context_id=context_id(context),
        )

    async def update_failed(self, entity: Any, context: Any) -> None:
        entity_id = self._id_getter(entity)
        state = self._failed_state if self._failed_state is not None else entity.state
        self._records[entity_id] = StoredEntityState(
            entity_id=entity_id,
            state=state_value(state),
            failed=True,
            context_id=context_id(context),
        )

    async def get(self, entity_id: str) -> Optional[StoredEntityState]:
        return self._records.get(entity_id)

    def clear(self) -> None:
        self._records.clear()


class PostgresStateRepository:
    """PostgreSQL implementation of the StateRepository protocol.

    Uses asyncpg with a connection pool. Each write is a single upsert into
    the ``entity_states`` table (see SCHEMA_SQL / ``create_schema``).

    Attributes:
        connection_string: PostgreSQL connection URL.
        min_pool_size: Minimum connections in pool.
        max_pool_size: Maximum connections in pool.
        failed_state: Optional state written by ``update_failed``.

    Example:
        >>> async with PostgresStateRepository("postgresql://...") as repo:
        ...     await repo.create_schema()
        ...     pipeline = (
        ...         create_pipeline()
        ...         .with_state_repository(repo)
        ...         .with_handler_resolver(resolver)
        ...         .build()
        ...     )
    """

    def __init__(
        self,
        connection_string: str,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
        id_getter: Callable[[Any], str] = _default_id_getter,
        failed_state: Any = None,
    ):
        self.connection_string = connection_string
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.failed_state = failed_state
        self._id_getter = id_getter
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def pool(self) -> asyncpg.Pool:
        """The live asyncpg pool.

        Raises:
            DatabaseError: If ``connect()`` has not been awaited yet.
        """
        if self._pool is None:
            raise DatabaseError(
                "entity_states pool not initialized; await connect() first"
            )
        return self._pool

    @property
    def connected(self) -> bool:
        return self._pool is not None

    @staticmethod
    def _failure(action: str, error: Exception, **fields: Any) -> DatabaseError:
        """Log a driver failure and wrap it for the caller to raise."""
        logger.error(
            f"Failed to {action}",
            extra={**fields, "error": str(error)},
        )
        return DatabaseError(f"Failed to {action}: {error}", original_error=error)

    async def connect(self) -> None:
        """Open the pool. Calling it on a connected repository does nothing.

        Raises:
            DatabaseError: If the pool cannot be created.
        """
        if self.connected:
            return

        try:
            self._pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
            )
        except Exception as e:
            raise self._failure("open entity_states pool", e) from e

        logger.info(
            "Opened entity_states pool",
            extra={
                "min_pool_size": self.min_pool_size,
                "max_pool_size": self.max_pool_size,
            },
        )

    async def disconnect(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()
            logger.info("Closed entity_states pool")

    async def __aenter__(self) -> "PostgresStateRepository":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.disconnect()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[asyncpg.Connection]:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def create_schema(self) -> None:
        """Create the ``entity_states`` table if it does not exist."""
        try:
            async with self._transaction() as conn:
                await conn.execute(SCHEMA_SQL)
        except Exception as e:
            raise self._failure("create entity_states schema", e) from e

    async def _upsert(
        self,
        entity_id: str,
        state: Any,
        failed: bool,
        ctx_id: Optional[str],
    ) -> None:
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO entity_states (
                    entity_id,
                    state,
                    failed,
                    context_id,
                    updated_at
                ) VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (entity_id) DO UPDATE SET
                    state = EXCLUDED.state,
                    failed = EXCLUDED.failed,
                    context_id = EXCLUDED.context_id,
                    updated_at = EXCLUDED.updated_at
                """,
                entity_id,
                str(state_value(state)),
                failed,
                ctx_id,
                datetime.now(timezone.utc),
            )

    async def update_state(self, entity: Any, context: Any) -> None:
        """Persist the entity's current state and clear its failed flag.

        Raises:
            DatabaseError: If the write fails.
        """
        entity_id = self._id_getter(entity)
        try:
            await self._upsert(entity_id, entity.state, False, context_id(context))
        except Exception as e:
            raise self._failure("update entity state", e, entity_id=entity_id) from e

        logger.debug(
            "Stored entity state",
            extra={"entity_id": entity_id, "state": state_value(entity.state)},
        )

    async def update_failed(self, entity: Any, context: Any) -> None:
        """Flag the entity as failed, writing ``failed_state`` when set.

        Raises:
            DatabaseError: If the write fails.
        """
        entity_id = self._id_getter(entity)
        state = self.failed_state if self.failed_state is not None else entity.state
        try:
            await self._upsert(entity_id, state, True, context_id(context))
        except Exception as e:
            raise self._failure("mark entity as failed", e, entity_id=entity_id) from e

        logger.warning(
            "Stored entity as failed",
            extra={"entity_id": entity_id, "state": state_value(state)},
        )

    async def get_state(self, entity_id: str) -> Optional[StoredEntityState]:
        """Read back what was last stored for ``entity_id``.

        Returns:
            The stored record, or None if the entity was never persisted.

        Raises:
            DatabaseError: If the query fails.
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT entity_id, state, failed, context_id, updated_at
                    FROM entity_states
                    WHERE entity_id = $1
                    """,
                    entity_id,
                )
        except Exception as e:
            raise self._failure("get entity state", e, entity_id=entity_id) from e

        if row is None:
            return None

        record = dict(row)
        # TIMESTAMPTZ comes back aware; naive values are treated as UTC
        if record["updated_at"].tzinfo is None:
            record["updated_at"] = record["updated_at"].replace(tzinfo=timezone.utc)
        return StoredEntityState(**record)

    async def health_check(self) -> bool:
        """Return True when a trivial query succeeds on a pooled connection."""
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval("SELECT 1") == 1
        except Exception as e:
            logger.warning("entity_states health check failed", extra={"error": str(e)})
            return False
