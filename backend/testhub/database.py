"""
TestHub Database Connection & Session Management
Engine setup, connection retry logic and the request-scoped session dependency
"""

import sqlite3
import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text, Engine
from sqlalchemy.exc import OperationalError, DisconnectionError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from .config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


class DatabaseManager:
    """
    Owns the engine and session factory. Initialized once by the application
    lifespan; tests may initialize it against their own database URL.
    """

    def __init__(self):
        self.engine: Optional[Engine] = None
        self.session_factory: Optional[sessionmaker] = None
        self.url: Optional[str] = None

    @property
    def is_initialized(self) -> bool:
        return self.engine is not None

    def initialize(self, url: Optional[str] = None, create_tables: bool = True) -> None:
        """Create the engine, verify connectivity and create missing tables"""
        if self.is_initialized and (url is None or url == self.url):
            return
        if self.is_initialized:
            self.close()

        self.url = url or settings.database.url
        self.engine = self._create_engine(self.url)
        self.session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
        )

        self._test_connection()

        if create_tables:
            # Import models so their tables are registered on the metadata
            from . import models  # noqa: F401
            Base.metadata.create_all(bind=self.engine)

        logger.info("Database initialization completed successfully")

    def _create_engine(self, url: str) -> Engine:
        if url.startswith('sqlite'):
            kwargs = {'connect_args': {'check_same_thread': False, 'timeout': 15}}
            if url in ('sqlite://', 'sqlite:///:memory:'):
                kwargs['poolclass'] = StaticPool
            engine = create_engine(url, **kwargs)
            event.listen(engine, 'connect', set_sqlite_pragma)
            return engine

        return create_engine(url, **settings.database.pool_settings)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        retry=retry_if_exception_type((OperationalError, DisconnectionError)),
        reraise=True,
    )
    def _test_connection(self) -> None:
        """Probe the database with retry logic"""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def check_health(self) -> bool:
        """Lightweight probe used by the health endpoint"""
        if not self.is_initialized:
            return False
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except OperationalError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session that commits on success and rolls back on error"""
        if not self.session_factory:
            raise RuntimeError("Database not initialized")

        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.debug(f"Database session rolled back: {e}")
            raise
        finally:
            session.close()

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            logger.info("Database connections closed")
        self.engine = None
        self.session_factory = None
        self.url = None


db_manager = DatabaseManager()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting a database session in FastAPI routes"""
    with db_manager.session_scope() as session:
        yield session


def set_sqlite_pragma(dbapi_connection, connection_record):
    """Set SQLite pragmas for integrity and concurrent access"""
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()


__all__ = [
    'Base',
    'DatabaseManager',
    'db_manager',
    'get_db',
]
