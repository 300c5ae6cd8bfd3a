"""
Module: inspex_kernel.db.engine
Responsibility: SQLAlchemy engine construction, session factory management,
    and transactional scope utilities.
Architecture position: Kernel > DB.  May import from db/base.py.
    MUST NOT import from services/, selectors/, or outer layers (except
    create_tables, which imports models so Base.metadata is populated).

Invariants enforced:
    - Services receive an explicit sessionmaker ("store handle").  The
      module-level engine below exists for scripts and CLIs only.
    - SQLite: every transaction opens with BEGIN IMMEDIATE, so concurrent
      writers serialize on the database lock instead of failing a lock
      upgrade half-way through a check-then-act sequence.
    - PostgreSQL: READ COMMITTED with pooled, pre-pinged connections.
      Conditional writes (version CAS, partial unique indexes) supply the
      stronger guarantees where needed.

Failure modes:
    - RuntimeError if get_engine/get_session_factory/session_scope is called
      before init_engine_from_url() without an explicit factory.
    - OperationalError ("database is locked") if a SQLite writer waits
      longer than busy_timeout.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from inspex_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _install_sqlite_serialization(engine: Engine, busy_timeout: float) -> None:
    """Take the SQLite write lock at BEGIN instead of at first write."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Hand transaction control to the "begin" listener below.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout * 1000)}")
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_engine(
    database_url: str,
    echo: bool = False,
    busy_timeout: float = 30.0,
    pool_size: int = 10,
    max_overflow: int = 10,
) -> Engine:
    """
    Build an engine for SQLite or PostgreSQL.

    Args:
        database_url: SQLAlchemy URL (``sqlite:///path.db`` or ``postgresql://...``).
        echo: If True, log all SQL statements.
        busy_timeout: Seconds a SQLite writer waits for the database lock.
        pool_size: PostgreSQL pool size.
        max_overflow: PostgreSQL connections beyond pool_size.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"timeout": busy_timeout, "check_same_thread": False},
        )
        _install_sqlite_serialization(engine, busy_timeout)
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            isolation_level="READ COMMITTED",
        )
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory used as the store handle for every component."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    busy_timeout: float = 30.0,
) -> Engine:
    """
    Initialize the module-level engine used by scripts.

    Postconditions: get_engine/get_session_factory/session_scope use this engine.
    """
    global _engine, _SessionFactory

    _engine = make_engine(database_url, echo=echo, busy_timeout=busy_timeout)
    _SessionFactory = create_session_factory(_engine)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed, and the exception
        is re-raised to the caller.

    Usage:
        with session_scope(factory) as session:
            session.add(entity)
    """
    factory = session_factory or get_session_factory()
    session = factory()
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


def create_tables(engine: Engine | None = None) -> None:
    """Create every kernel table on the given (or module-level) engine."""
    from inspex_kernel.db.base import Base
    import inspex_kernel.models  # noqa: F401  (registers tables)

    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from inspex_kernel.db.base import Base
    import inspex_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose and forget the module-level engine."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None
    _SessionFactory = None


atexit.register(reset_engine)
