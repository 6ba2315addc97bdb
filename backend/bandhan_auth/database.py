"""
Database Configuration and Session Management
Async SQLAlchemy setup with an explicitly constructed storage handle
"""
from typing import AsyncGenerator
from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, StaticPool
from loguru import logger

# Base class for models
Base = declarative_base()


class Database:
    """
    Owns the engine and session factory.
    Built once at process start (see main.lifespan) and handed to whoever
    needs storage, instead of living as a module-level global.
    """

    def __init__(self, url: str, echo: bool = False, environment: str = "production",
                 pool_size: int = 10, max_overflow: int = 20):
        self.url = url
        if url.startswith("sqlite"):
            # An in-memory database only exists on the connection that made it
            pool_args = {"poolclass": StaticPool} if ":memory:" in url else {}
            self.engine = create_async_engine(
                url,
                echo=echo,
                connect_args={"check_same_thread": False},
                **pool_args,
            )
        elif environment == "test":
            self.engine = create_async_engine(url, echo=echo, poolclass=NullPool)
        else:
            self.engine = create_async_engine(
                url,
                echo=echo,
                pool_size=pool_size,
                max_overflow=max_overflow,
            )

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )

    async def create_all(self):
        """Create all tables (development start-up; production uses Alembic)"""
        # Import all models to ensure they're registered
        from bandhan_auth import models  # noqa: F401
        async with self.engine.begin() as conn:
            await conn.run_sync(lambda sync_conn: Base.metadata.create_all(sync_conn, checkfirst=True))
        logger.info("Database tables created successfully")

    async def ping(self) -> bool:
        """Check database connectivity"""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database ping failed: {e}")
            return False

    async def dispose(self):
        """Close database connections"""
        await self.engine.dispose()
        logger.info("Database connections closed")

    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        async with self.session_factory() as session:
            try:
                yield session
            finally:
                await session.close()


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session from the app's storage handle"""
    database: Database = request.app.state.db
    async for session in database.session():
        yield session
