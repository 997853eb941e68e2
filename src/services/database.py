"""
Database connection and session management for MyRecipeBox.

This module provides:
- Database engine creation and configuration
- The Database store handle (engine + session factory)
- Transactional session and connection scopes
- Foreign key enforcement and WAL mode

A Database is constructed explicitly and passed to every service that needs
the store. Nothing in this module keeps a process-wide engine, so tests can
run each component against its own in-memory store.
"""

from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .logging_utils import get_service_logger

# Configure logging
logger = get_service_logger(__name__)

IN_MEMORY_URL = "sqlite://"


def _is_in_memory(database_url: str) -> bool:
    """Check whether a SQLite URL points at an in-memory database."""
    return database_url == IN_MEMORY_URL or ":memory:" in database_url or "mode=memory" in database_url


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create and configure the database engine.

    SQLite's Python driver does not open a transaction before DDL statements,
    so the driver's own transaction handling is switched off and SQLAlchemy
    emits BEGIN itself. Schema changes made by a migration step then commit or
    roll back together with the step's version record.

    Args:
        database_url: SQLAlchemy database URL
        echo: If True, log all SQL statements (useful for debugging)

    Returns:
        Configured SQLAlchemy Engine
    """
    logger.info(f"Creating database engine: {database_url}")
    in_memory = _is_in_memory(database_url)

    if in_memory:
        # For in-memory databases (testing), use StaticPool
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        # For file-based databases
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        """Set SQLite pragmas on every new connection."""
        dbapi_connection.isolation_level = None

        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin_transaction(connection):
        """Emit BEGIN so DDL runs inside the transaction."""
        connection.exec_driver_sql("BEGIN")

    return engine


class Database:
    """
    Handle on the persistent record store.

    Owns one engine and one session factory. Services receive the handle in
    their constructor (or as the first argument of module functions) and open
    short-lived sessions or connections through it.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        echo: bool = False,
    ):
        """
        Initialize the store handle.

        Args:
            database_url: SQLAlchemy URL. Defaults to an in-memory database.
            engine: Pre-built engine; takes precedence over database_url
            echo: If True, log all SQL statements
        """
        if engine is None:
            engine = create_database_engine(database_url or IN_MEMORY_URL, echo=echo)
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @property
    def url(self) -> str:
        """Database URL as a string."""
        return str(self.engine.url)

    def get_session(self) -> Session:
        """
        Create a new database session.

        Returns:
            New Session instance
        """
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Provide a transactional scope for ORM operations.

        This context manager handles session lifecycle automatically:
        - Creates a new session
        - Commits on success
        - Rolls back on exception
        - Always closes the session

        Yields:
            Database session

        Example:
            with database.session_scope() as session:
                session.add(Recipe(id="r1", title="Tea"))
                # Commit happens automatically if no exception
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def connection_scope(self) -> Iterator[Connection]:
        """
        Provide one atomic unit of work on a raw connection.

        Used for schema changes. Commits on success, rolls back on exception.

        Yields:
            SQLAlchemy Connection inside an open transaction
        """
        with self.engine.begin() as connection:
            yield connection

    def table_names(self) -> List[str]:
        """
        List the tables (including virtual tables) present in the store.

        Returns:
            Table names
        """
        return inspect(self.engine).get_table_names()

    def column_names(self, table_name: str) -> List[str]:
        """
        List the columns of a table.

        Args:
            table_name: Table to inspect

        Returns:
            Column names, empty if the table does not exist
        """
        inspector = inspect(self.engine)
        if table_name not in inspector.get_table_names():
            return []
        return [column["name"] for column in inspector.get_columns(table_name)]

    def dispose(self) -> None:
        """
        Close all database connections.

        Useful for cleanup or before application exit.
        """
        self.engine.dispose()
        logger.info("Database connections closed")

    def __repr__(self) -> str:
        """String representation of the handle."""
        return f"Database(url='{self.url}')"
