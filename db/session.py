from typing import Optional

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from core.config import settings


def build_engine(url: str) -> AsyncEngine:
    """asyncpg with a tuned pool in production, aiosqlite for local runs and tests."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.DEBUG, future=True)

    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_size=20,       # Concurrent students per worker
        max_overflow=10,    # Submit bursts at session end
        future=True,
    )


engine = build_engine(settings.DATABASE_URL)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_models(bind: AsyncEngine = None):
    """Create missing tables without migrations (local sqlite, tests, demos)."""
    from models.base import Base
    from models import user, exam, exam_session  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    # Services own their commits; the session only has to be closed
    async with AsyncSessionLocal() as session:
        yield session


_redis: Optional[Redis] = None


async def get_redis():
    """Process-wide client for the assignment lock; requests share its pool."""
    global _redis
    if _redis is None:
        _redis = Redis.from_url(settings.REDIS_URL, decode_responses=True, socket_connect_timeout=1)
    yield _redis


async def close_redis():
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
