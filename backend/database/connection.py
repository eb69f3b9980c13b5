from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text
from typing import Optional
import logging

from config import get_settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


class Base(DeclarativeBase):
    pass


def get_engine() -> AsyncEngine:
    """Create the async engine on first use."""
    global _engine
    if _engine is None:
        settings = get_settings()
        if not settings.DATABASE_URL:
            raise ValueError("DATABASE_URL environment variable is not set")

        connect_args = {"ssl": "require"} if settings.is_production else {}
        _engine = create_async_engine(
            settings.DATABASE_URL,
            echo=False,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            connect_args=connect_args
        )
    return _engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False
        )
    return _session_factory


async def get_db():
    """Dependency to get database session"""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """Verify the database connection and that the card tables exist"""
    try:
        async with get_engine().begin() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("PostgreSQL connection successful")

            tables_query = text("""
                SELECT table_name
                FROM information_schema.tables
                WHERE table_schema = 'public'
            """)
            result = await conn.execute(tables_query)
            tables = [row[0] for row in result.fetchall()]
            logger.info(f"Available tables: {tables}")

            return True
    except Exception as e:
        logger.error(f"Database initialization error: {e}")
        raise


async def dispose_engine():
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
