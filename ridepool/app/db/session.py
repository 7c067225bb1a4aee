"""
Database engine and sessions (SQLAlchemy async; asyncpg in production).

Services own their unit of work and call commit/rollback themselves, so
sessions do not expire objects on commit.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from ridepool.app.core.config import settings


def _engine_options(url: str) -> dict:
    options = {"echo": settings.db_echo, "pool_pre_ping": True}
    # SQLite (local runs) has no server-side pool to size
    if not make_url(url).get_backend_name().startswith("sqlite"):
        options.update(pool_size=settings.db_pool_size, max_overflow=settings.db_max_overflow)
    return options


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """FastAPI dependency: one session per request."""
    async with AsyncSessionLocal() as session:
        yield session
