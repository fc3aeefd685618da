"""
Async SQLAlchemy engine, session factory and schema setup.
SQLite (aiosqlite) is the default store; PostgreSQL (asyncpg) is supported
for larger deployments.
"""
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy import text
from urllib.parse import urlparse
import logging

from village_portal.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # aiosqlite connections cannot be shared across event loops
        return {"echo": False, "poolclass": NullPool}
    return {
        "echo": False,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
    }


engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncSession:
    """
    FastAPI dependency yielding one session per request.
    Commits when the handler returns normally, rolls back if it raises.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {str(e)}", exc_info=True)
            raise


def describe_database_url(url: str) -> str:
    """
    Short description of the configured database for startup logs.

    Raises:
        ValueError: if the URL is empty, malformed or not SQLite/PostgreSQL
    """
    if not url:
        raise ValueError("DATABASE_URL is empty")

    parsed = urlparse(url)
    if parsed.scheme.startswith("sqlite"):
        return f"SQLite database at {parsed.path.lstrip('/') or ':memory:'}"
    if not parsed.scheme.startswith("postgresql"):
        raise ValueError(f"Unsupported database URL scheme: {parsed.scheme or '(none)'}")
    if not parsed.hostname:
        raise ValueError("No hostname found in DATABASE_URL")
    return f"PostgreSQL {parsed.hostname}:{parsed.port or 5432}{parsed.path or '/postgres'}"


async def init_db():
    """
    Check connectivity and create missing tables.
    Runs at startup before the bootstrap seeder.
    """
    try:
        description = describe_database_url(settings.DATABASE_URL)
    except ValueError as e:
        logger.error(f"Invalid DATABASE_URL: {str(e)}")
        raise

    logger.info(f"Using {description}")

    import village_portal.models  # noqa: F401  (registers tables on Base.metadata)

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error(f"Database initialization failed for {description} ({type(e).__name__}): {str(e)}")
        raise

    logger.info("Database tables ensured")


async def close_db():
    await engine.dispose()
    logger.info("Database connections closed")
