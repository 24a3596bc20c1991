"""
Module: treasury_kernel.db.engine
Responsibility: Engine initialization, session factory and the transactional
    scope helper.  The single point of database connection configuration.
Architecture position: Kernel > DB.  create_tables/drop_tables import the
    models lazily so that importing this module stays cheap.

Backends:
    - PostgreSQL (production): QueuePool with pre-ping, READ COMMITTED, and
      SELECT ... FOR UPDATE row locks for per-treasury serialization.
    - SQLite (development and tests): one shared connection (StaticPool) for
      SQLite URLs.  SQLite ignores FOR UPDATE but serializes writers
      itself, so the per-treasury guarantees still hold.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory is called
      before init_engine_from_url().
"""

import atexit
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from treasury_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


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
    Initialize the module engine and session factory.

    A second call replaces the first; call reset_engine() in between to
    release the old pool.

    Args:
        database_url: SQLAlchemy URL (postgresql://... or sqlite://...).
        echo: Log every SQL statement.
        pool_size, max_overflow, pool_timeout, pool_recycle: QueuePool
            settings, ignored for SQLite.
        pool_pre_ping: Test connections before use.

    Returns:
        The new Engine.
    """
    global _engine, _SessionFactory

    url = make_url(database_url)
    dialect = url.get_backend_name()

    options: dict[str, Any]
    if dialect == "sqlite":
        options = {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    else:
        options = {
            "poolclass": QueuePool,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_pre_ping": pool_pre_ping,
            "pool_timeout": pool_timeout,
            "pool_recycle": pool_recycle,
            "isolation_level": "READ COMMITTED",
        }

    _engine = create_engine(url, echo=echo, **options)
    if dialect == "sqlite":
        event.listen(_engine, "connect", _enable_sqlite_foreign_keys)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": dialect, "database": url.database, "echo": echo},
    )
    return _engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine() -> Engine:
    """The current engine; RuntimeError before init_engine_from_url()."""
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Session factory, for callers that need one session per thread."""
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Commit on normal exit; roll back, log and re-raise on error.  The
    session is closed either way.

    Usage:
        with session_scope() as session:
            TreasuryLedger(session, clock).deposit(...)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("session_scope_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every treasury table (RuntimeError if not initialized)."""
    from treasury_kernel.db.base import Base
    import treasury_kernel.models  # noqa: F401  (registers all tables)

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Drop every treasury table.  Testing only."""
    from treasury_kernel.db.base import Base
    import treasury_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"


atexit.register(reset_engine)
