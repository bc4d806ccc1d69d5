"""
Engine and session management for the PPE kernel.

One engine per process, created by ``init_engine_from_url``.  Outer layers
either take sessions from ``get_session_factory()`` (one per thread) or use
``session_scope()`` for a commit-or-rollback block.

Backend notes:
    - PostgreSQL: QueuePool, READ COMMITTED.  Contended balance rows are
      serialized by ``SELECT ... FOR UPDATE`` and by conditional
      ``UPDATE ... RETURNING``.
    - SQLite: a single shared connection (StaticPool).  pysqlite's implicit
      transaction handling is switched off so SQLAlchemy emits BEGIN and
      SAVEPOINT itself; batch returns rely on nested savepoints.
"""

import atexit
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from ppe_kernel.db.immutability import register_immutability_listeners
from ppe_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")


@dataclass
class _Runtime:
    engine: Engine | None = None
    factory: sessionmaker[Session] | None = None


_runtime = _Runtime()

_NOT_READY = "Database not initialized; call init_engine_from_url() first."


def _sqlite_engine(url: str, echo: bool) -> Engine:
    engine = create_engine(
        url,
        echo=echo,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _pragma_and_autocommit(dbapi_conn: Any, _record: Any) -> None:
        dbapi_conn.isolation_level = None
        dbapi_conn.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(engine, "begin")
    def _explicit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    return engine


def _postgres_engine(url: str, echo: bool, **pool: Any) -> Engine:
    return create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        isolation_level="READ COMMITTED",
        **pool,
    )


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
    Create the process engine and its session factory.

    Pool arguments apply to PostgreSQL only.  Calling again replaces the
    previous engine without disposing it; use ``reset_engine`` for that.
    """
    if database_url.startswith("sqlite"):
        engine = _sqlite_engine(database_url, echo)
    else:
        engine = _postgres_engine(
            database_url,
            echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
        )

    _runtime.engine = engine
    _runtime.factory = sessionmaker(bind=engine, expire_on_commit=False)
    register_immutability_listeners()

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": engine.dialect.name, "pool_size": pool_size, "echo": echo},
    )
    return engine


def get_engine() -> Engine:
    if _runtime.engine is None:
        raise RuntimeError(_NOT_READY)
    return _runtime.engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for callers that need one session per thread."""
    if _runtime.factory is None:
        raise RuntimeError(_NOT_READY)
    return _runtime.factory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Commit on clean exit, roll back and re-raise otherwise.

        with session_scope() as session:
            InventoryOperations(session).intake(...)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every kernel table on the current engine and install the ORM immutability guards."""
    from ppe_kernel.db.base import Base
    import ppe_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())
    register_immutability_listeners()


def drop_tables() -> None:
    from ppe_kernel.db.base import Base
    import ppe_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def is_postgres() -> bool:
    return _runtime.engine is not None and _runtime.engine.dialect.name == "postgresql"


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    if _runtime.engine is not None:
        _runtime.engine.dispose()
    _runtime.engine = None
    _runtime.factory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _runtime.engine is not None:
        _runtime.engine.dispose()
