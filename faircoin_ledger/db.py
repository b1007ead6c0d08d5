# faircoin_ledger/db.py
"""Database session and connection management"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import SQLAlchemyError

from faircoin_ledger.config import settings
from faircoin_ledger.models.db import Base
from faircoin_ledger.db_config import DatabaseManager

logger = logging.getLogger(__name__)

class Database:
    """Database connection and session manager"""

    def __init__(self):
        """Initialize database manager state"""
        self._engine = None
        self._SessionLocal = None

    def _get_connection_string(self) -> str:
        """
        Get database connection string from settings.

        Raises:
            ValueError: If the database settings are incomplete
        """
        try:
            return DatabaseManager.connection_string(settings)
        except ValueError as e:
            logger.error(f"Failed to resolve database connection: {e}")
            raise

    def _create_engine(self, connection_string: str) -> Engine:
        if connection_string.startswith('sqlite'):
            # Request handlers and the scheduler share the engine across threads
            kwargs = {'connect_args': {'check_same_thread': False, 'timeout': 30}}
            if connection_string in ('sqlite://', 'sqlite:///:memory:'):
                kwargs['poolclass'] = StaticPool
            return create_engine(connection_string, **kwargs)
        return create_engine(connection_string, pool_pre_ping=True)

    def init(self, connection_string: Optional[str] = None) -> None:
        """
        Initialize database connection and create tables.

        This should be called once at application startup.

        Args:
            connection_string: Overrides the connection string from settings

        Raises:
            SQLAlchemyError: If database initialization fails
        """
        try:
            connection_string = connection_string or self._get_connection_string()
            self._engine = self._create_engine(connection_string)
            Base.metadata.create_all(self._engine)
            self._SessionLocal = sessionmaker(bind=self._engine, expire_on_commit=False)
            logger.info("Database initialized successfully")

        except SQLAlchemyError as e:
            logger.error(f"Database initialization failed: {e}")
            raise

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of database operations.

        The session commits when the block exits normally and rolls back
        when it raises, so a failed operation leaves no partial writes.

        Usage:
            with db.session() as session:
                session.add(some_object)

        Yields:
            Session: SQLAlchemy database session

        Raises:
            RuntimeError: If database not initialized
        """
        if not self._SessionLocal:
            raise RuntimeError("Database not initialized. Call init() first.")

        session = self._SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        """
        Clean up database connections.
        Should be called during application shutdown.
        """
        if self._engine:
            self._engine.dispose()
            self._engine = None
            self._SessionLocal = None

# Global database instance
db = Database()
