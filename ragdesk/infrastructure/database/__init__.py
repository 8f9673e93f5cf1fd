"""
Database Infrastructure
=======================

Manages database connections, session lifecycle, and engine configuration.

Uses SQLAlchemy 2.0 with asyncpg for async PostgreSQL operations. Any other
SQLAlchemy async dialect (aiosqlite in tests) works through the same class.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    SQLAlchemy 2.0 style using DeclarativeBase.
    """
    pass


class Database:
    """
    Owns one async engine and its session maker.

    Built once by the container and handed to repositories.
    """

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        engine_kwargs = {"echo": echo, "pool_pre_ping": True}
        if database_url.startswith("postgresql"):
            # asyncpg expects ssl=, not libpq's sslmode=
            database_url = database_url.replace("sslmode=", "ssl=")
            engine_kwargs.update(pool_size=pool_size, max_overflow=max_overflow)

        self.url = database_url
        self.engine: Optional[AsyncEngine] = create_async_engine(database_url, **engine_kwargs)
        self.session_maker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @property
    def supports_row_locks(self) -> bool:
        """SELECT ... FOR UPDATE is only meaningful on server databases."""
        return not self.url.startswith("sqlite")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Async context manager for one unit of work.

        Commits on success, rolls back and re-raises on error.

        Usage:
            async with database.session() as session:
                result = await session.execute(select(ConversationThreadModel))
        """
        if self.engine is None:
            raise RuntimeError("Database is closed.")

        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """
        Create all database tables.

        Development and tests only; production schemas are migrated.
        """
        # Import models so they register on Base.metadata
        from ragdesk.assistant.infrastructure import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of pooled connections."""
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
