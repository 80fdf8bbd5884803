"""Async database engine and session management for the expense store."""
import logging
from typing import Tuple

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from models.tables import Base

logger = logging.getLogger(__name__)


def create_engine_and_sessionmaker(database_url: str, echo: bool = False) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Builds the async engine and its session factory.

    Called once at startup; the pair is handed to request handlers through
    the application state rather than living as module globals.
    """
    engine_kwargs = {"echo": echo}
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        # Every connection must see the same in-memory database
        engine_kwargs["poolclass"] = StaticPool
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    engine = create_async_engine(database_url, **engine_kwargs)
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    logger.info(f"Database engine created for {engine.url.render_as_string(hide_password=True)}")
    return engine, session_factory


async def init_db(engine: AsyncEngine) -> None:
    """Creates the expenses table if it does not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready.")


async def ping_db(engine: AsyncEngine) -> bool:
    """Returns True when a trivial statement succeeds against the engine."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database ping failed: {e}")
        return False
