"""
Database connection management with connection pooling.

This module owns the SQLAlchemy engine, the session factory and the
translation of backend outages into PersistenceError.
"""
from contextlib import contextmanager
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from core.config import settings
from core.exceptions import PersistenceError
import logging
import time

logger = logging.getLogger(__name__)

Base = declarative_base()


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Let pysqlite run real transactions so SAVEPOINT works.

    The driver otherwise defers BEGIN until the first DML statement, which
    breaks the per-date savepoints used by the bulk operations.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None

    # IMMEDIATE takes the write lock up front so concurrent writers queue on
    # the busy timeout instead of failing a lock upgrade mid-transaction
    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine for ``url`` with pooling suited to the backend."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}, "echo": echo}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        sqlite_engine = create_engine(url, **kwargs)
        _enable_sqlite_savepoints(sqlite_engine)
        return sqlite_engine

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=settings.DB_POOL_SIZE,  # Number of connections to maintain
        max_overflow=settings.DB_MAX_OVERFLOW,  # Additional connections beyond pool_size
        pool_timeout=settings.DB_POOL_TIMEOUT,  # Seconds to wait for connection
        pool_recycle=settings.DB_POOL_RECYCLE,  # Recycle connections after this many seconds
        pool_pre_ping=True,  # Verify connections before using
        echo=echo,  # Log SQL queries in debug mode
    )


engine = build_engine(settings.database_url, echo=settings.DEBUG)

# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # Prevent lazy loading issues
)


@event.listens_for(engine, "checkout")
def receive_checkout(dbapi_conn, connection_record, connection_proxy):
    """Log when connection is checked out from pool."""
    logger.debug("Connection checked out from pool")


@event.listens_for(engine, "checkin")
def receive_checkin(dbapi_conn, connection_record):
    """Log when connection is returned to pool."""
    logger.debug("Connection returned to pool")


@contextmanager
def persistence_guard(operation: str):
    """
    Translate backend unavailability into PersistenceError.

    Integrity and programming errors are left alone: they are bugs or
    races the caller handles, not outages a retry would fix.
    """
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        logger.error(
            f"Storage failure during {operation}: {e}",
            extra={"extra_fields": {"operation": operation}},
        )
        raise PersistenceError(operation) from e


def get_db() -> Session:
    """
    Dependency for FastAPI to get database session.

    Services commit their own units of work; anything left pending when the
    request finishes is committed here, and rolled back on error.
    """
    db = None
    max_retries = 3
    retry_delay = 0.1  # 100ms initial delay

    for attempt in range(max_retries):
        try:
            db = SessionLocal()
            # Verify connection is alive
            db.execute(text("SELECT 1"))
            break
        except (OperationalError, InterfaceError) as e:
            if db:
                db.close()
            if attempt == max_retries - 1:
                logger.error(f"Failed to establish database connection after {max_retries} attempts: {e}")
                raise PersistenceError("connect") from e
            logger.warning(f"Database connection attempt {attempt + 1} failed, retrying...")
            time.sleep(retry_delay * (2 ** attempt))  # Exponential backoff

    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        if db:
            db.close()


def check_db_connection() -> bool:
    """
    Check if database connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
