"""
Database configuration and session management.

Provides:
- Engine creation with per-dialect configuration
- Session factory creation
- transaction() helper shared by all stores
- A thread pool for store calls made from async code
- Database initialization utilities
"""

import asyncio
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import contextmanager
from functools import partial
from typing import Any, Callable, Generator, Optional, TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

POSTGRES_POOL_SIZE = 5

T = TypeVar("T")


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine configured for the database type.

    Args:
        database_url: SQLAlchemy connection URL
        echo: Log SQL statements

    Returns:
        Engine: Configured SQLAlchemy engine
    """
    if "sqlite" in database_url.lower():
        kwargs = {
            "connect_args": {"check_same_thread": False},  # Needed for FastAPI threads
            "echo": echo,
        }
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            # Single shared connection, otherwise each checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable foreign key constraints in SQLite."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    # PostgreSQL-specific configuration
    return create_engine(
        database_url,
        pool_size=POSTGRES_POOL_SIZE,  # Maximum number of connections in pool
        pool_recycle=3600,  # Recycle connections after 1 hour
        pool_pre_ping=True,  # Test connections before using them
        echo=echo,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """
    Create the session factory used by every store.

    Objects stay readable after commit, since stores hand them back to
    request handlers once their transaction has closed.
    """
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


@contextmanager
def transaction(
    session_factory: sessionmaker,
    session: Optional[Session] = None,
) -> Generator[Session, None, None]:
    """
    Run a unit of work.

    Joins the caller's session when one is given (the caller owns commit
    and rollback); otherwise opens a new session that commits on success
    and rolls back on error.

    Usage:
        with transaction(self._session_factory, db) as session:
            session.add(row)

    Yields:
        Session: SQLAlchemy database session
    """
    if session is not None:
        yield session
        return

    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def create_db_executor(database_url: str) -> ThreadPoolExecutor:
    """
    Create the thread pool that runs store calls for async code.

    SQLite allows a single writer, so its calls share one worker. Other
    databases get one worker per pooled connection.
    """
    workers = 1 if "sqlite" in database_url.lower() else POSTGRES_POOL_SIZE
    return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="collator-db")


async def run_blocking(
    executor: Optional[Executor],
    func: Callable[..., T],
    *args: Any,
    **kwargs: Any,
) -> T:
    """
    Run a synchronous store call in the thread pool.

    Usage:
        comment = await run_blocking(self._executor, self.comments.get, file_key, comment_id)

    Args:
        executor: Pool to run on (None uses the event loop's default pool)
        func: Blocking callable
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(executor, partial(func, *args, **kwargs))


def init_db(engine: Engine) -> None:
    """
    Initialize database by creating all tables.

    This is useful for development and testing. In production, use Alembic migrations.
    """
    from collator.models.base import Base

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")


def drop_all_tables(engine: Engine) -> None:
    """
    Drop all tables from the database.

    WARNING: This will delete all data. Primarily for testing and development.
    """
    from collator.models.base import Base

    logger.warning("Dropping all database tables...")
    Base.metadata.drop_all(bind=engine)
    logger.info("All database tables dropped")


def check_connection(engine: Engine) -> bool:
    """
    Test database connection.

    Returns:
        bool: True if connection successful, False otherwise
    """
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
