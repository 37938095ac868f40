"""
Database configuration and session management.
Uses SQLAlchemy 2.0 with async support.
"""

from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

import structlog
from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
    AsyncEngine
)

from .config import Settings, DatabaseConfig
from .exceptions import DatabaseError, BridgeIndexerException


logger = structlog.get_logger(__name__)


class Database:
    """
    Owns the async engine and session maker for one database.

    Built once by the entry point and handed to every component that needs
    storage; there is no module-level engine.
    """

    def __init__(self, settings: Settings, url: Optional[str] = None):
        self.settings = settings
        self.url = DatabaseConfig.get_database_url(url or settings.database_url)
        self.logger = logger.bind(service="database")
        self._engine: Optional[AsyncEngine] = None
        self._session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise DatabaseError("Database not initialized. Call connect() first.")
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    async def connect(self) -> None:
        """Create the engine and session maker."""
        if self._engine is not None:
            return

        self.logger.info("Initializing database connection")

        self._engine = create_async_engine(
            self.url,
            **DatabaseConfig.get_engine_config(self.settings, self.url),
            echo=self.settings.debug
        )
        if self._engine.dialect.name == "sqlite" and ":memory:" not in self.url:
            event.listen(self._engine.sync_engine, "connect", _enable_sqlite_wal)

        self._session_maker = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        self.logger.info("Database connection initialized", dialect=self._engine.dialect.name)

    async def close(self) -> None:
        """Dispose the engine."""
        if self._engine is None:
            return

        self.logger.info("Closing database connection")
        await self._engine.dispose()
        self._engine = None
        self._session_maker = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Open a session wrapped in a single transaction.

        Commits when the block exits normally and rolls back everything on
        any exception. SQLAlchemy failures are re-raised as DatabaseError.

        Usage:
            async with database.session() as session:
                ...
        """
        if self._session_maker is None:
            raise DatabaseError("Database not initialized. Call connect() first.")

        async with self._session_maker() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                self.logger.error("Database transaction failed", error=str(e))
                raise DatabaseError(f"Database transaction failed: {e}") from e
            except BaseException:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """Create all tables in the database."""
        from bridge_indexer.models.base import Base

        self.logger.info("Creating database tables")
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to create tables: {e}") from e
        self.logger.info("Database tables created")

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except BridgeIndexerException as e:
            self.logger.error("Database health check failed", error=str(e))
            return False


def _enable_sqlite_wal(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()
