"""
Database connection management for RoadWatch AI
PostgreSQL in production, SQLite for development and tests
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import SQLAlchemyError

from roadwatch.core.config import settings
from .models import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseConnection:
    """
    Database connection manager with connection pooling.

    Sessions do not expire objects on commit, so incidents returned by the
    store stay readable after their session is closed.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        pool_size: Optional[int] = None,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        echo: Optional[bool] = None
    ):
        """
        Initialize database connection.

        Args:
            database_url: SQLAlchemy connection URL
            pool_size: Connection pool size (ignored for SQLite)
            max_overflow: Max connections beyond pool_size
            pool_timeout: Timeout for getting connection from pool
            echo: Log emitted SQL
        """
        self.database_url = database_url or settings.database_url
        url = make_url(self.database_url)

        engine_kwargs = {
            "pool_pre_ping": True,
            "echo": settings.db_echo if echo is None else echo,
        }

        if url.get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs.update(
                pool_size=pool_size or settings.db_pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
            )

        self.engine = create_engine(self.database_url, **engine_kwargs)

        if self.dialect_name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine
        )

        logger.info(f"Database connection initialized: {self._mask_url(self.database_url)}")

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def _mask_url(self, url: str) -> str:
        """Mask password in connection URL for logging."""
        return make_url(url).render_as_string(hide_password=True)

    def create_tables(self) -> None:
        """Create all database tables."""
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database tables created successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create tables: {e}")
            raise

    def drop_tables(self) -> None:
        """Drop all database tables. Use with caution!"""
        try:
            Base.metadata.drop_all(bind=self.engine)
            logger.warning("All database tables dropped")
        except SQLAlchemyError as e:
            logger.error(f"Failed to drop tables: {e}")
            raise

    def check_connection(self) -> bool:
        """
        Check if database connection is healthy.

        Returns:
            True if connection is healthy
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions.

        Commits on success, rolls back on any error.

        Yields:
            SQLAlchemy session
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Close database connection and dispose engine."""
        self.engine.dispose()
        logger.info("Database connection closed")


# Global database instance
_db: Optional[DatabaseConnection] = None


def get_db() -> DatabaseConnection:
    """
    Get global database connection instance.

    Returns:
        DatabaseConnection instance
    """
    global _db
    if _db is None:
        _db = DatabaseConnection()
    return _db


def init_db(database_url: Optional[str] = None) -> DatabaseConnection:
    """
    Initialize global database connection and create missing tables.

    Args:
        database_url: Optional database URL override

    Returns:
        DatabaseConnection instance
    """
    global _db
    _db = DatabaseConnection(database_url=database_url)
    _db.create_tables()
    return _db
