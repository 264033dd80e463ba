"""
Module: stock_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  This is the single point of database
    connection configuration for the kernel.
Architecture position: Kernel > DB.  May import from db/base.py, config and
    logging_config.  MUST NOT import from services/, selectors/ or domain/
    (create_tables imports the model package so Base.metadata is complete).

Backends:
    - PostgreSQL (psycopg2): QueuePool, READ COMMITTED.  Conditional UPDATEs
      take the row lock, so concurrent writers to one inventory row queue
      behind each other.
    - SQLite: every transaction starts with BEGIN IMMEDIATE, which takes the
      database write lock up front and serializes writers.  In-memory URLs
      share a single connection through StaticPool.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory is called
      before init_engine_from_url().
    - OperationalError ("database is locked") on SQLite when a writer waits
      longer than the busy timeout.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, SessionTransaction, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from stock_kernel.config import EngineConfig
from stock_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _is_sqlite_url(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _is_memory_sqlite(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url


def _install_sqlite_locking(engine: Engine) -> None:
    """
    Take over pysqlite transaction handling so BEGIN IMMEDIATE is emitted.

    pysqlite defers BEGIN until the first DML statement, which breaks
    SAVEPOINT and lets two readers race to upgrade their locks.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create an engine for ``database_url`` without installing it as the
    module default.  Used directly by tests that need a second database.

    Args:
        database_url: PostgreSQL or SQLite connection URL.
        echo: If True, log all SQL statements.
        pool_size: Number of connections to keep in the pool (PostgreSQL).
        max_overflow: Max connections beyond pool_size (PostgreSQL).
        pool_pre_ping: If True, test connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.

    Returns:
        SQLAlchemy Engine instance.
    """
    if _is_sqlite_url(database_url):
        if _is_memory_sqlite(database_url):
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            engine = create_engine(
                database_url,
                echo=echo,
                connect_args={
                    "check_same_thread": False,
                    "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
                },
            )
        _install_sqlite_locking(engine)
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )
    return engine


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Initialize the module engine and session factory from a database URL.

    Postconditions: Module-level _engine and _SessionFactory are initialized.
        A second call replaces the first.  Arguments as for build_engine.
    """
    global _engine, _SessionFactory

    _engine = build_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
    )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )

    return _engine


def init_engine_from_config(config: EngineConfig) -> Engine:
    """
    Process start-up from an ``EngineConfig``: JSON logging at
    ``config.log_level``, then the module engine.

        config = load_config("stock_kernel.yaml")
        init_engine_from_config(config)
    """
    configure_logging(level=config.log_level)
    return init_engine_from_url(
        config.database_url,
        echo=config.echo_sql,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
    )


_NOT_INITIALIZED = (
    "No database engine. Call init_engine_from_config() or "
    "init_engine_from_url() at start-up."
)


def get_engine() -> Engine:
    """The module engine.  RuntimeError before initialization."""
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    Factory bound to the module engine.

    Worker threads take one session each from it; a Session must never be
    shared across threads.
    """
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    One request's transaction: commit on success, roll back on error.

        with session_scope() as session:
            ledger = InventoryLedger(session)
            transactions = StockTransactionService(session, ledger)
            SalesOrderService(session, ledger, transactions).approve(order_id, actor_id)

    The session is always closed; the exception, if any, is re-raised.
    """
    session = get_session()
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


@contextmanager
def atomic(session: Session) -> Generator[SessionTransaction, None, None]:
    """
    Run a block as one all-or-nothing unit inside the caller's transaction.

    Opens a SAVEPOINT; on exception everything written inside the block is
    rolled back and the exception propagates.  The enclosing transaction is
    left usable and is still committed (or not) by the caller.
    """
    with session.begin_nested() as savepoint:
        yield savepoint


def _metadata():
    from stock_kernel.db.base import Base
    import stock_kernel.models  # noqa: F401  (registers every table)

    return Base.metadata


def create_tables() -> None:
    """Create inventory, document, order, transfer and audit tables."""
    metadata = _metadata()
    metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(metadata.tables)})


def drop_tables() -> None:
    """Drop every kernel table.  Test teardown only."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the module engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()


def is_postgres() -> bool:
    """True when the module engine talks to PostgreSQL."""
    return _engine is not None and _engine.dialect.name == "postgresql"
