"""
SHOP - Async Database Client

Provides async database access using SQLAlchemy 2.0. Production runs
on PostgreSQL via asyncpg; tests and local development use SQLite
via aiosqlite.
"""
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager
import logging

from sqlalchemy import MetaData, text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker
)

from db.models import Base


logger = logging.getLogger("shop.db.postgres")


class PostgresClient:
    """
    Async database client for one store (write store or event log).

    Features:
    - Connection pooling with asyncpg
    - Session factory with expire_on_commit disabled
    - Transactional session scope
    """

    def __init__(
        self,
        database_url: str,
        pool_size: int = 10,
        max_overflow: int = 20,
        echo: bool = False,
        metadata: MetaData = Base.metadata,
    ):
        self.database_url = database_url
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.echo = echo
        self.metadata = metadata

        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database client not initialized")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Database client not initialized")
        return self._session_factory

    async def initialize(self) -> None:
        """Initialize database engine and session factory."""
        if self._engine is not None:
            return

        if self.is_sqlite:
            self._engine = create_async_engine(self.database_url, echo=self.echo)
        else:
            self._engine = create_async_engine(
                self.database_url,
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                echo=self.echo,
                pool_pre_ping=True,
                pool_recycle=1800,
                pool_timeout=30,
                connect_args={
                    "prepared_statement_cache_size": 100,
                    "command_timeout": 60,
                }
            )

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        logger.info(
            f"Database client initialized ({self._engine.url.get_backend_name()}, "
            f"pool_size={self.pool_size})"
        )

    async def close(self) -> None:
        """Close database connections."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connections closed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits on success and rolls back on error."""
        if not self._session_factory:
            await self.initialize()

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except BaseException:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """Create all tables of this client's metadata."""
        if not self._engine:
            await self.initialize()
        async with self.engine.begin() as conn:
            await conn.run_sync(self.metadata.create_all)
            logger.info("Database tables created")

    async def health_check(self) -> bool:
        """Return True if a trivial query succeeds."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return False
