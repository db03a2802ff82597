"""
Pytest fixtures for the stockledger test suite.

Provides:
- A database engine and schema created once per session
- Per-test sessions isolated by an outer transaction that is rolled back
- A real-commit session factory for concurrency tests
- Deterministic clock, tenant/actor ids and service fixtures

Environment Variables:
- DATABASE_URL: PostgreSQL connection URL. If not set, the suite runs against
  a SQLite file in a temporary directory (writers serialized by BEGIN IMMEDIATE).
"""

import json
import logging
import os
import threading
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from stockledger_config.schema import CostingPolicy
from stockledger_kernel.db.base import Base
from stockledger_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from stockledger_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from stockledger_kernel.domain.clock import DeterministicClock
from stockledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from stockledger_kernel.models.product import ProductModel
from stockledger_modules.inventory import InventoryAdjustmentService
from stockledger_modules.orders import OrderService
from stockledger_modules.stock import StockService
from stockledger_services import (
    BalanceLedgerService,
    FifoCostService,
    ProductService,
)

TEST_TENANT_ID = uuid4()
TEST_ACTOR_ID = uuid4()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "postgres: mark test as requiring PostgreSQL")
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture stockledger logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, inventory_service):
            inventory_service.adjust(...)
            logs = captured_logs()
            assert any(r["message"] == "inventory_adjustment_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    base = logging.getLogger("stockledger")
    previous_level = base.level
    base.setLevel(logging.DEBUG)
    base.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    base.removeHandler(handler)
    base.setLevel(previous_level)


# =============================================================================
# Session-scoped DB infrastructure
# =============================================================================


def get_database_url(tmp_dir) -> str:
    """DATABASE_URL if set, else a SQLite file under ``tmp_dir``."""
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_dir / 'stockledger_test.db'}"


@pytest.fixture(scope="session")
def db_engine(tmp_path_factory):
    """Single engine for the whole run. Pool sized for the concurrency tests."""
    url = get_database_url(tmp_path_factory.mktemp("db"))
    eng = init_engine_from_url(url, echo=False, pool_size=10, max_overflow=10, pool_timeout=10)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session; immutability listeners stay active."""
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


def _delete_all_rows(engine) -> None:
    """Raw DELETE in dependency order. Bypasses the ORM immutability listeners."""
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(text(f"DELETE FROM {table.name}"))


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection, so every
    ``session.commit()`` made by a service only releases a savepoint. The
    outer transaction is rolled back at teardown.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Concurrency fixtures (real commits + DELETE cleanup)
# =============================================================================


@pytest.fixture
def committing_session_factory(db_engine, db_tables):
    """Tracked factory of real-commit sessions, one per thread.

    On teardown new sessions are refused, every tracked session is rolled
    back and closed, and all rows are deleted.
    """
    factory = get_session_factory()
    created: list[Session] = []
    lock = threading.Lock()
    closed = False

    def tracked_factory() -> Session:
        with lock:
            if closed:
                raise RuntimeError("committing_session_factory closed (fixture teardown)")
            s = factory()
            created.append(s)
            return s

    yield tracked_factory

    with lock:
        closed = True
    for s in created:
        if s.in_transaction():
            s.rollback()
        s.close()
    _delete_all_rows(db_engine)


# =============================================================================
# Identity and clock fixtures
# =============================================================================


@pytest.fixture
def tenant_id() -> UUID:
    return TEST_TENANT_ID


@pytest.fixture
def actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def policy() -> CostingPolicy:
    return CostingPolicy()


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def fifo_service(session, deterministic_clock, policy) -> FifoCostService:
    return FifoCostService(session, clock=deterministic_clock, policy=policy)


@pytest.fixture
def ledger_service(session, deterministic_clock) -> BalanceLedgerService:
    return BalanceLedgerService(session, clock=deterministic_clock)


@pytest.fixture
def product_service(session, deterministic_clock, policy) -> ProductService:
    return ProductService(session, clock=deterministic_clock, policy=policy)


@pytest.fixture
def inventory_service(session, deterministic_clock, policy) -> InventoryAdjustmentService:
    return InventoryAdjustmentService(session, clock=deterministic_clock, policy=policy)


@pytest.fixture
def order_service(session, deterministic_clock, policy) -> OrderService:
    return OrderService(session, clock=deterministic_clock, policy=policy)


@pytest.fixture
def stock_service(session, deterministic_clock, policy) -> StockService:
    return StockService(session, clock=deterministic_clock, policy=policy)


# =============================================================================
# Data factories
# =============================================================================


@pytest.fixture
def create_product(product_service, tenant_id, actor_id):
    """Factory: a product created through ProductService (opening stock is layered)."""

    def _create(price=10000, cost=None, stock=0, name="Widget", sku=None):
        return product_service.create_product(
            tenant_id=tenant_id,
            actor_id=actor_id,
            name=name,
            price=price,
            cost=cost,
            stock=stock,
            sku=sku,
        )

    return _create


@pytest.fixture
def legacy_product(session, tenant_id, actor_id, deterministic_clock):
    """Factory: a product inserted directly, with stock but no cost layer."""

    def _create(stock=10, cost=None, price=8000, name="Legacy widget"):
        product = ProductModel(
            tenant_id=tenant_id,
            name=name,
            price=price,
            cost=cost,
            stock=stock,
            created_at=deterministic_clock.now(),
            created_by_id=actor_id,
        )
        session.add(product)
        session.flush()
        return product

    return _create
