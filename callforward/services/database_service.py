"""
Database service for the Call Forward Service.

Owns the async SQLAlchemy engine and hands out sessions to the stores.
"""

from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.exc import SQLAlchemyError

from callforward.models.database_models import Base
from callforward.utils.logger import get_logger
from callforward.utils.exceptions import DatabaseException

logger = get_logger(__name__)


class DatabaseService:
    """
    Async database service for PostgreSQL operations.

    The engine's connection pool is the only handle to the store that is
    shared between concurrent AGI connections and API requests.
    """

    def __init__(self, database_url: str, echo: bool = False):
        """
        Initialize database service.

        Args:
            database_url: SQLAlchemy async URL
            echo: Log every SQL statement
        """
        self.database_url = database_url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self.async_session_maker: Optional[async_sessionmaker] = None

    async def init(self) -> None:
        """Initialize database engine and create tables."""
        try:
            engine_kwargs = {"echo": self.echo, "pool_pre_ping": True}
            if not self.database_url.startswith("sqlite"):
                engine_kwargs.update(pool_size=5, max_overflow=10)

            self.engine = create_async_engine(self.database_url, **engine_kwargs)

            self.async_session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            logger.info("Database initialized successfully")

        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to initialize database: {e}")
            raise DatabaseException(f"Database initialization failed: {str(e)}")

    async def close(self) -> None:
        """Close database connection."""
        if self.engine:
            await self.engine.dispose()
            logger.info("Database connection closed")

    def session(self) -> AsyncSession:
        """Get async database session."""
        if not self.async_session_maker:
            raise DatabaseException("Database service used before init()")
        return self.async_session_maker()

    async def health_check(self) -> bool:
        """
        Check database connectivity.

        Returns:
            True if a trivial query succeeds
        """
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, DatabaseException) as e:
            logger.error(f"Database health check failed: {e}")
            return False
