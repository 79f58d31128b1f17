"""
Database Session Management

Async engine and session factory construction for the review store.
"""

from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from reviewiq.common.config import DatabaseConfig
from reviewiq.common.db import models  # noqa: F401  registers the tables
from reviewiq.common.db.base import Base
from reviewiq.common.logger import app_logger

logger = app_logger.getChild("db.session")


def get_engine_kwargs(config: DatabaseConfig) -> Dict[str, Any]:
    """
    Engine keyword arguments for the configured database.
    Connection pooling options only apply to server databases.
    """
    kwargs: Dict[str, Any] = {"echo": config.echo}

    if not config.url.startswith("sqlite"):
        kwargs.update({
            "pool_size": config.pool_size,
            "max_overflow": config.max_overflow,
            "pool_timeout": config.pool_timeout,
            "pool_pre_ping": True,
            "pool_recycle": 300,
        })

    return kwargs


def create_engine(config: DatabaseConfig) -> AsyncEngine:
    return create_async_engine(config.url, **get_engine_kwargs(config))


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create any missing tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema initialized")
