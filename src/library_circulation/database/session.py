"""
Database session management for the Library Circulation service.

This module provides connection management and session handling for SQLAlchemy.
Every loan operation runs in exactly one short-lived session:

1. Transaction Management: a borrow creates the loan row AND decrements the
   item's available copies, or neither happens
2. Thread Safety: requests run concurrently, one session per request
3. Error Translation: driver errors become ``StoreUnavailable`` or
   ``ConflictError`` before they reach the engine's callers
"""

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_config
from ..errors import CirculationError, ConflictError, StoreUnavailable
from .schema import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DatabaseManager:
    """
    Manages database connections and sessions.

    This class provides:
    - Lazily created engine and session factory
    - SQLite pragmas (foreign keys, busy timeout) for concurrent access
    - Transactional ``session_scope`` used by every engine operation
    - Schema initialization for development and tests
    """

    def __init__(self, database_url: str | None = None):
        """
        Initialize the database manager.

        Args:
            database_url: SQLAlchemy database URL. If None, uses the configured SQLite file.
        """
        if database_url is None:
            config = get_config()
            db_path = config.database_path

            if not db_path.is_absolute():
                db_path = Path.cwd() / db_path

            db_path.parent.mkdir(exist_ok=True, parents=True)

            database_url = f"sqlite:///{db_path}"
            logger.info("Using SQLite database at: %s", db_path)

        self.database_url = database_url
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def engine(self) -> Engine:
        """
        Get or create the database engine.

        In-memory SQLite shares one connection (StaticPool) so every session
        sees the same database; file-backed SQLite gets a regular pool and a
        busy timeout so concurrent writers wait instead of failing.
        """
        if self._engine is None:
            if self.database_url.startswith("sqlite"):
                in_memory = ":memory:" in self.database_url or self.database_url in (
                    "sqlite://",
                    "sqlite+pysqlite://",
                )
                if in_memory:
                    self._engine = create_engine(
                        self.database_url,
                        poolclass=StaticPool,
                        connect_args={"check_same_thread": False},
                        echo=False,
                    )
                else:
                    self._engine = create_engine(
                        self.database_url,
                        connect_args={"check_same_thread": False, "timeout": 30},
                        echo=False,
                    )

                @event.listens_for(self._engine, "connect")
                def set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ARG001
                    cursor = dbapi_connection.cursor()
                    cursor.execute("PRAGMA foreign_keys=ON")
                    cursor.close()
            else:
                self._engine = create_engine(
                    self.database_url,
                    pool_size=10,
                    max_overflow=20,
                    pool_pre_ping=True,
                    echo=False,
                )

            logger.info("Database engine created: %s", self._engine.url)

        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autocommit=False,
                autoflush=False,
                # Keep objects usable after commit so engine results can be built
                expire_on_commit=False,
            )
        return self._session_factory

    def create_session(self) -> Session:
        """Create a new database session. Prefer ``session_scope``."""
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for database operations.

        ```python
        with db_manager.session_scope() as session:
            item = session.get(Item, item_id)
        # Session is automatically committed or rolled back
        ```

        Circulation errors raised inside the block roll back and propagate
        unchanged; datastore errors are translated.
        """
        session = self.create_session()
        try:
            yield session
            safe_commit(session, "transaction")
            logger.debug("Database transaction committed successfully")
        except CirculationError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            logger.exception("Database error, rolling back")
            session.rollback()
            raise StoreUnavailable(f"Datastore error: {e.__class__.__name__}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_database(self, drop_existing: bool = False) -> None:
        """
        Initialize the database schema.

        Args:
            drop_existing: If True, drop all tables before creating
        """
        engine = self.engine

        if drop_existing:
            logger.warning("Dropping all existing tables...")
            Base.metadata.drop_all(bind=engine)

        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialization complete")

    def verify_connection(self) -> bool:
        """Return True if a trivial query succeeds (health check)."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection verified")
            return True
        except SQLAlchemyError:
            logger.exception("Database connection failed")
            return False

    def close(self) -> None:
        """Dispose of the engine. Called when the service shuts down."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_factory = None


# Global database manager instance
_db_manager: DatabaseManager | None = None


def get_db_manager(database_url: str | None = None) -> DatabaseManager:
    """
    Get the global database manager instance.

    Args:
        database_url: Database URL (only used on first call)
    """
    global _db_manager  # noqa: PLW0603 - Singleton pattern for database manager

    if _db_manager is None:
        _db_manager = DatabaseManager(database_url)

    return _db_manager


def set_db_manager(manager: DatabaseManager | None) -> None:
    """Replace the global database manager (tests, alternate databases)."""
    global _db_manager  # noqa: PLW0603
    _db_manager = manager


def safe_commit(session: Session, operation: str) -> None:
    """
    Commit a session, translating datastore failures.

    Raises:
        ConflictError: A constraint rejected the write (another request won)
        StoreUnavailable: Any other datastore failure
    """
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning("Commit for '%s' rejected by a constraint", operation)
        raise ConflictError(f"Database operation '{operation}' conflicted: {e.orig}") from e
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Commit for '%s' failed", operation)
        raise StoreUnavailable(f"Database operation '{operation}' failed") from e


def safe_query(session: Session, query_func: Callable[[Session], T], error_msg: str) -> T:
    """
    Execute a query, translating datastore failures.

    Args:
        session: The database session
        query_func: Function that performs the query
        error_msg: Context for the error message

    Raises:
        ConflictError: A conditional statement hit a constraint
        StoreUnavailable: If the query fails
    """
    try:
        return query_func(session)
    except IntegrityError as e:
        raise ConflictError(f"{error_msg}: {e.orig}") from e
    except SQLAlchemyError as e:
        logger.exception("Query failed")
        raise StoreUnavailable(f"{error_msg}: Database query failed") from e
