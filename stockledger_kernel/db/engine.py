"""
Engine initialization, session factory and transactional scope.

PostgreSQL is the production backend: sessions run at READ COMMITTED and the
costing services take explicit ``SELECT ... FOR UPDATE`` row locks on products
and cost layers.

SQLite is supported for development and tests. It has no row locks, so every
transaction is opened with ``BEGIN IMMEDIATE``, which takes the database write
lock up front and holds it until commit. Writers are serialized for the whole
read-check-write sequence, which is the same no-overdraw guarantee the row
locks give on PostgreSQL. ``FOR UPDATE`` is simply omitted by the SQLite
compiler.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from stockledger_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _install_sqlite_immediate_transactions(engine: Engine) -> None:
    """Make pysqlite hand transaction control to SQLAlchemy and begin IMMEDIATE."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    busy_timeout: float = 30.0,
) -> Engine:
    """
    Initialize the module-level engine and session factory.

    Calling again replaces the previous engine without disposing it; use
    reset_engine() first when that matters.

    Args:
        database_url: ``postgresql://...`` or ``sqlite:///path``.
        echo: Log every SQL statement.
        pool_size: Connections kept in the pool.
        max_overflow: Connections allowed beyond pool_size.
        pool_pre_ping: Test connections before handing them out.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.
        busy_timeout: SQLite only. Seconds a writer waits for the database lock.
    """
    global _engine, _SessionFactory

    dialect = make_url(database_url).get_backend_name()

    options: dict = {
        "echo": echo,
        "poolclass": QueuePool,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": pool_pre_ping,
        "pool_timeout": pool_timeout,
        "pool_recycle": pool_recycle,
    }
    if dialect == "sqlite":
        options["connect_args"] = {
            "check_same_thread": False,
            "timeout": busy_timeout,
        }
    else:
        options["isolation_level"] = "READ COMMITTED"

    _engine = create_engine(database_url, **options)
    if dialect == "sqlite":
        _install_sqlite_immediate_transactions(_engine)

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": dialect,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )

    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """Session factory for callers that need one session per thread."""
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Commit on normal exit, roll back and re-raise on exception, always close.

    Usage:
        with session_scope() as session:
            FifoCostService(session).create_layer(...)
    """
    session = get_session()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every table known to the model registry."""
    from stockledger_kernel.db.base import Base
    import stockledger_kernel.models  # noqa: F401  (registers tables)

    engine = get_engine()
    Base.metadata.create_all(engine)
    logger.info(
        "tables_created",
        extra={"tables": sorted(Base.metadata.tables)},
    )


def drop_tables() -> None:
    """Drop all tables. Test and tooling use only."""
    from stockledger_kernel.db.base import Base
    import stockledger_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())
    logger.warning("tables_dropped")


def reset_engine() -> None:
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose() -> None:
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)


def is_postgres() -> bool:
    if _engine is None:
        return False
    return _engine.dialect.name == "postgresql"
