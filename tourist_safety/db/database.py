# tourist_safety/db/database.py
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base
from tourist_safety.core.config import settings
from typing import AsyncGenerator
import logging

logger = logging.getLogger(__name__)


def _engine_options() -> dict:
    options = {"echo": settings.DATABASE_ECHO}
    if not settings.is_sqlite:
        options.update(
            pool_pre_ping=True,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW
        )
    return options


engine = create_async_engine(settings.DATABASE_URL, **_engine_options())

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Asynchronous database session dependency for FastAPI
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            logger.error(f"Async database session error: {e}")
            await session.rollback()
            raise


async def init_db() -> None:
    """Create tables for every model registered on Base."""
    # Models must be imported before create_all
    from tourist_safety.models import emergency_models  # noqa: F401

    logger.info(f"Tables registered with Base.metadata: {len(Base.metadata.tables)}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created/verified successfully")
