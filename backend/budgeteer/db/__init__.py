"""
Database Layer - Async SQLAlchemy engine + session factory.
"""
import logging
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from budgeteer import config

logger = logging.getLogger("budgeteer-db")


class Base(DeclarativeBase):
    pass


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"echo": False}
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "echo": False,
        # Lazy connect so import doesn't immediately try to connect
        "pool_timeout": 5,
    }


engine = create_async_engine(config.DATABASE_URL, **_engine_kwargs(config.DATABASE_URL))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db():
    """Create tables. Skips gracefully in dev mode when no DB is configured."""
    if not config.DATABASE_CONFIGURED:
        logger.warning("DATABASE_URL not set — skipping init_db() (dev mode)")
        return
    from budgeteer.models import orm_models  # noqa: F401
    async with engine.begin() as conn:
        if config.DB_RESET_ON_STARTUP:
            logger.warning("DB_RESET_ON_STARTUP=true — dropping all tables")
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized.")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
