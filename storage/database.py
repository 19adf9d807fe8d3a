"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Manages async database connections and sessions.

- Creates the async engine from configuration
- Hands out one AsyncSession per unit of work
- Rolls back and re-raises on failure
- Creates tables for tests and local development

============================================================
DATABASE REQUIREMENTS
============================================================
- PostgreSQL via asyncpg in production
- SQLite via aiosqlite in tests
- SQLAlchemy 2.0 async ORM

============================================================
"""

import os
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from storage.exceptions import DatabaseConnectionError, PersistenceError
from storage.models import Base


logger = logging.getLogger(__name__)


DEFAULT_DATABASE_URL = "postgresql+asyncpg://trader@localhost:5432/ai_trading"


# ============================================================
# CONFIGURATION
# ============================================================

@dataclass
class DatabaseConfig:
    """Database connection configuration."""

    url: str = DEFAULT_DATABASE_URL
    """SQLAlchemy async URL."""

    echo: bool = False
    """Log SQL statements."""

    pool_size: int = 5
    max_overflow: int = 10

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Load configuration from DATABASE_URL / DATABASE_ECHO."""
        load_dotenv()
        url = os.getenv("DATABASE_URL")
        if not url:
            url = DEFAULT_DATABASE_URL
            logger.warning(f"DATABASE_URL not set, using default: {url.split('@')[-1]}")
        return cls(
            url=url,
            echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
        )

    @classmethod
    def for_testing(cls) -> "DatabaseConfig":
        """In-memory SQLite for tests."""
        return cls(url="sqlite+aiosqlite:///:memory:")


# ============================================================
# DATABASE
# ============================================================

class Database:
    """
    Async engine and session factory.

    Usage:
        db = Database(DatabaseConfig.from_env())
        async with db.session() as session:
            repo = TradingRepository(session)
            ...
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self._config = config or DatabaseConfig.from_env()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    def _create_engine(self) -> AsyncEngine:
        url = self._config.url
        logger.info(f"Creating database engine for: {url.split('@')[-1]}")
        if url.startswith("sqlite"):
            # one shared connection keeps an in-memory database alive
            return create_async_engine(url, echo=self._config.echo, poolclass=StaticPool)
        return create_async_engine(
            url,
            echo=self._config.echo,
            pool_size=self._config.pool_size,
            max_overflow=self._config.max_overflow,
            pool_pre_ping=True,
        )

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Context manager for one unit of work.

        On exception:
            - Rolls back
            - Re-raises the exception
        """
        session = self.session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            logger.error(f"Database error, rolling back: {e}")
            await session.rollback()
            raise PersistenceError(str(e), operation="session") from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def create_all(self) -> None:
        """Create all ledger tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    async def verify_connection(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except OperationalError as e:
            logger.error(f"Database connection failed: {e}")
            raise DatabaseConnectionError(f"Cannot connect to database: {e}") from e

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
