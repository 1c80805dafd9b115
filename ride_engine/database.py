from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text
from typing import Optional
import logging
from .config import settings

logger = logging.getLogger(__name__)

# Created on startup so importing the models never needs a database driver
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker] = None


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def init_engine(database_url: Optional[str] = None, **engine_kwargs) -> async_sessionmaker:
    """Create the async engine and session maker"""
    global engine, AsyncSessionLocal

    url = database_url or settings.database_url
    if url.startswith("postgresql") and not engine_kwargs:
        engine_kwargs = {
            "pool_size": 20,
            "max_overflow": 30,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
        }

    engine = create_async_engine(url, echo=settings.debug, **engine_kwargs)
    AsyncSessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    logger.info(f"Database engine initialised for {engine.url.drivername}")
    return AsyncSessionLocal


async def create_tables():
    """Create all tables known to the metadata"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine():
    """Dispose the engine on shutdown"""
    global engine, AsyncSessionLocal
    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
    engine = None
    AsyncSessionLocal = None


# Health check function
async def check_database_health() -> bool:
    """Check if database is healthy"""
    if AsyncSessionLocal is None:
        return False
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
            return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
