"""
Module: church_ledger.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  LedgerDatabase is the single point of
    database connection configuration.
Architecture position: Kernel > DB.  May import from db/base.py and
    db/immutability.py.  create_tables() imports the models package so that
    Base.metadata knows every table.

Invariants enforced:
    - One database transaction per session_scope(): commit on success,
      rollback on any exception.  Services never commit themselves.
    - PostgreSQL runs at READ COMMITTED with pooled, pre-pinged connections;
      row-level locks (FOR UPDATE) provide the stronger guarantees where
      needed (sequence counters).
    - SQLite opens every transaction with BEGIN IMMEDIATE, so writers are
      serialized by the database file lock and SAVEPOINT works.
    - Immutability listeners are registered when a LedgerDatabase is built.

Failure modes:
    - OperationalError when the database is unreachable or locked past the
      configured timeout.  Callers map this to StoreUnavailable.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from church_ledger.db.immutability import register_immutability_listeners
from church_ledger.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

DEFAULT_SQLITE_TIMEOUT = 30


def _is_memory_sqlite(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or (
        database_url.startswith("sqlite") and "mode=memory" in database_url
    )


def _install_sqlite_transaction_hooks(engine: Engine) -> None:
    """
    Take over transaction control from pysqlite.

    pysqlite's implicit BEGIN defers locking and breaks SAVEPOINT.  Emitting
    BEGIN IMMEDIATE ourselves acquires the write lock up front.
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


class LedgerDatabase:
    """
    Owns the engine and session factory for one ledger database.

    Contract:
        Constructed explicitly from a URL and passed to whoever needs it.
        There is no module-level engine.

    Guarantees:
        - session_scope() yields a session whose work is committed on normal
          exit and rolled back on exception.
        - Sessions use expire_on_commit=False so DTOs and ORM rows read in a
          scope stay readable after it closes.

    Usage:
        db = LedgerDatabase("sqlite:///ledger.db")
        db.create_tables()
        with db.session_scope() as session:
            ...
    """

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 10,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        sqlite_timeout: int = DEFAULT_SQLITE_TIMEOUT,
    ):
        self.database_url = database_url

        if database_url.startswith("sqlite"):
            if _is_memory_sqlite(database_url):
                self.engine = create_engine(
                    database_url,
                    echo=echo,
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                )
            else:
                self.engine = create_engine(
                    database_url,
                    echo=echo,
                    connect_args={
                        "check_same_thread": False,
                        "timeout": sqlite_timeout,
                    },
                )
            _install_sqlite_transaction_hooks(self.engine)
        else:
            self.engine = create_engine(
                database_url,
                echo=echo,
                poolclass=QueuePool,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=True,
                pool_timeout=pool_timeout,
                isolation_level="READ COMMITTED",
            )

        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        register_immutability_listeners()

        configure_logging()
        logger.info(
            "engine_initialized",
            extra={"dialect": self.engine.dialect.name, "echo": echo},
        )

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        Postconditions: On normal exit the session is committed and closed.
            On exception it is rolled back and closed, and the exception is
            re-raised.
        """
        session = self._session_factory()
        logger.debug("transaction_started")
        try:
            yield session
            session.commit()
            logger.debug("transaction_committed")
        except Exception:
            session.rollback()
            logger.debug("transaction_rolled_back")
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create every ledger table (no-op for tables that already exist)."""
        from church_ledger import models  # noqa: F401
        from church_ledger.db.base import Base

        Base.metadata.create_all(self.engine)
        logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})

    def dispose(self) -> None:
        """Release all pooled connections."""
        self.engine.dispose()
