"""Unit tests for the in-memory and PostgreSQL state repositories.

The PostgreSQL repository is exercised against a mocked asyncpg pool so the
tests run without a database.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.workflow.state.models import StateRepository
from src.workflow.state.repository import (
    SCHEMA_SQL,
    DatabaseError,
    InMemoryStateRepository,
    PostgresStateRepository,
)
from tests.workflow.support import Order, OrderState, make_context, run_async


def make_pool():
    """Mocked asyncpg pool whose acquire() yields a connection with a transaction."""
    conn = MagicMock()
    conn.execute = AsyncMock()
    conn.fetchrow = AsyncMock()
    conn.fetchval = AsyncMock(return_value=1)

    tx_cm = MagicMock()
    tx_cm.__aenter__ = AsyncMock(return_value=None)
    tx_cm.__aexit__ = AsyncMock(return_value=False)
    conn.transaction = MagicMock(return_value=tx_cm)

    acquire_cm = MagicMock()
    acquire_cm.__aenter__ = AsyncMock(return_value=conn)
    acquire_cm.__aexit__ = AsyncMock(return_value=False)

    pool = MagicMock()
    pool.acquire = MagicMock(return_value=acquire_cm)
    pool.close = AsyncMock()
    return pool, conn


@pytest.fixture
def pool_and_conn():
    return make_pool()


@pytest.fixture
def postgres_repository(pool_and_conn):
    pool, _ = pool_and_conn
    repository = PostgresStateRepository("postgresql://localhost/workflow")
    repository._pool = pool
    return repository


class TestInMemoryStateRepository:
    """Tests for InMemoryStateRepository."""

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryStateRepository(), StateRepository)

    def test_update_state_records_entity(self):
        repository = InMemoryStateRepository()
        order = Order(state=OrderState.PAID)
        ctx = make_context()

        run_async(repository.update_state(order, ctx))
        stored = run_async(repository.get(order.id))

        assert stored.entity_id == order.id
        assert stored.state == "paid"
        assert stored.failed is False
        assert stored.context_id == str(ctx.id)
        assert stored.updated_at.tzinfo is not None

    def test_update_failed_keeps_state_by_default(self):
        repository = InMemoryStateRepository()
        order = Order(state=OrderState.PAID)

        run_async(repository.update_failed(order, make_context()))
        stored = run_async(repository.get(order.id))

        assert stored.state == "paid"
        assert stored.failed is True

    def test_update_failed_writes_failed_state(self):
        repository = InMemoryStateRepository(failed_state=OrderState.FAILED)
        order = Order(state=OrderState.PAID)

        run_async(repository.update_failed(order, make_context()))

        assert run_async(repository.get(order.id)).state == "failed"

    def test_writes_are_upserts(self):
        repository = InMemoryStateRepository()
        order = Order(state=OrderState.NEW)

        run_async(repository.update_failed(order, make_context()))
        order.state = OrderState.PAID
        run_async(repository.update_state(order, make_context()))
        stored = run_async(repository.get(order.id))

        assert stored.state == "paid"
        assert stored.failed is False

    def test_custom_id_getter_and_dict_context(self):
        repository = InMemoryStateRepository(id_getter=lambda entity: f"order-{entity.id}")
        order = Order(id="42")

        run_async(repository.update_state(order, {"id": "ctx-9"}))
        stored = run_async(repository.get("order-42"))

        assert stored.context_id == "ctx-9"

    def test_get_unknown_and_clear(self):
        repository = InMemoryStateRepository()
        order = Order()
        run_async(repository.update_state(order, None))

        assert run_async(repository.get("missing")) is None
        assert run_async(repository.get(order.id)).context_id is None

        repository.clear()
        assert run_async(repository.get(order.id)) is None


class TestPostgresConnection:
    """Tests for pool lifecycle."""

    def test_pool_not_initialized(self):
        repository = PostgresStateRepository("postgresql://localhost/workflow")

        with pytest.raises(DatabaseError, match="not initialized"):
            _ = repository.pool

    def test_connect_creates_pool(self):
        pool, _ = make_pool()
        repository = PostgresStateRepository(
            "postgresql://localhost/workflow", min_pool_size=1, max_pool_size=5
        )

        with patch(
            "src.workflow.state.repository.asyncpg.create_pool",
            new=AsyncMock(return_value=pool),
        ) as create_pool:
            run_async(repository.connect())

        create_pool.assert_awaited_once_with(
            "postgresql://localhost/workflow", min_size=1, max_size=5
        )
        assert repository.pool is pool

    def test_connect_is_idempotent(self, postgres_repository, pool_and_conn):
        pool, _ = pool_and_conn

        with patch(
            "src.workflow.state.repository.asyncpg.create_pool",
            new=AsyncMock(),
        ) as create_pool:
            run_async(postgres_repository.connect())

        create_pool.assert_not_awaited()
        assert postgres_repository.connected
        assert postgres_repository.pool is pool

    def test_connect_failure_wraps_error(self):
        repository = PostgresStateRepository("postgresql://localhost/workflow")
        original = OSError("connection refused")

        with patch(
            "src.workflow.state.repository.asyncpg.create_pool",
            new=AsyncMock(side_effect=original),
        ):
            with pytest.raises(DatabaseError) as exc_info:
                run_async(repository.connect())

        assert exc_info.value.original_error is original

    def test_disconnect_closes_pool(self, postgres_repository, pool_and_conn):
        pool, _ = pool_and_conn

        run_async(postgres_repository.disconnect())

        pool.close.assert_awaited_once()
        with pytest.raises(DatabaseError):
            _ = postgres_repository.pool

    def test_health_check(self, postgres_repository, pool_and_conn):
        _, conn = pool_and_conn

        assert run_async(postgres_repository.health_check()) is True

        conn.fetchval.side_effect = OSError("gone")
        assert run_async(postgres_repository.health_check()) is False

    def test_create_schema(self, postgres_repository, pool_and_conn):
        _, conn = pool_and_conn

        run_async(postgres_repository.create_schema())

        conn.execute.assert_awaited_once_with(SCHEMA_SQL)


class TestPostgresWrites:
    """Tests for update_state / update_failed upserts."""

    def test_update_state_upserts(self, postgres_repository, pool_and_conn):
        _, conn = pool_and_conn
        order = Order(state=OrderState.PAID, id="ord-1")
        ctx = make_context()

        run_async(postgres_repository.update_state(order, ctx))

        conn.transaction.assert_called_once()
        args = conn.execute.await_args.args
        assert "ON CONFLICT (entity_id) DO UPDATE" in args[0]
        assert args[1:5] == ("ord-1", "paid", False, str(ctx.id))
        assert isinstance(args[5], datetime)

    def test_update_failed_upserts_failed_state(self, pool_and_conn):
        pool, conn = pool_and_conn
        repository = PostgresStateRepository(
            "postgresql://localhost/workflow", failed_state=OrderState.FAILED
        )
        repository._pool = pool

        run_async(repository.update_failed(Order(state=OrderState.PAID, id="ord-2"), None))

        args = conn.execute.await_args.args
        assert args[1:5] == ("ord-2", "failed", True, None)

    def test_write_failure_wraps_error(self, postgres_repository, pool_and_conn):
        _, conn = pool_and_conn
        original = OSError("connection reset")
        conn.execute.side_effect = original

        with pytest.raises(DatabaseError) as exc_info:
            run_async(postgres_repository.update_state(Order(), make_context()))

        assert exc_info.value.original_error is original

    def test_update_failed_failure_wraps_error(self, postgres_repository, pool_and_conn):
        _, conn = pool_and_conn
        conn.execute.side_effect = OSError("connection reset")

        with pytest.raises(DatabaseError, match="Failed to mark entity as failed"):
            run_async(postgres_repository.update_failed(Order(), make_context()))


class TestPostgresReads:
    """Tests for get_state."""

    def test_get_state_returns_record(self, postgres_repository, pool_and_conn):
        _, conn = pool_and_conn
        conn.fetchrow.return_value = {
            "entity_id": "ord-1",
            "state": "paid",
            "failed": False,
            "context_id": "ctx-1",
            "updated_at": datetime(2024, 1, 1, 12, 0),
        }

        stored = run_async(postgres_repository.get_state("ord-1"))

        assert stored.entity_id == "ord-1"
        assert stored.state == "paid"
        assert stored.updated_at.tzinfo == timezone.utc

    def test_get_state_missing(self, postgres_repository, pool_and_conn):
        _, conn = pool_and_conn
        conn.fetchrow.return_value = None

        assert run_async(postgres_repository.get_state("missing")) is None

    def test_get_state_failure_wraps_error(self, postgres_repository, pool_and_conn):
        _, conn = pool_and_conn
        conn.fetchrow.side_effect = OSError("timeout")

        with pytest.raises(DatabaseError, match="Failed to get entity state"):
            run_async(postgres_repository.get_state("ord-1"))
