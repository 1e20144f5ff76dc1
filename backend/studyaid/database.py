"""
StudyAid Backend — Database Session Management
================================================

What:  Async SQLAlchemy engine, session factory and declarative Base.
Why:   The generation pipeline reads prior study material (sessions, evidence,
       chat history) to ground RAG answers. Those reads share one pool.
How:   An async engine (asyncpg) with connection pooling. The context store
       opens a short-lived session per query batch; nothing here writes.
When:  Engine is created at module import; sessions are opened per request.

Connection Pooling Strategy:
    pool_size=20:      Persistent connections for normal load
    max_overflow=10:   Temporary connections for traffic spikes
    pool_pre_ping:     Validates connections before use (catches stale connections)
    pool_recycle=3600: Recycles connections every hour
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from studyaid.config import settings


def build_engine(database_url: str) -> AsyncEngine:
    """Engine with pool settings; SQLite URLs (tests) skip the pool options."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url)
    return create_async_engine(
        database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_recycle=3600,
        # SQL echo only when debugging; it is very noisy
        echo=settings.log_level == "DEBUG",
    )


engine = build_engine(settings.database_url)

# expire_on_commit=False: rows stay readable after the session closes
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Shares one metadata object so Alembic autogenerate sees every table.
    """
    pass


async def dispose_engine() -> None:
    """
    What:  Gracefully closes all connections in the pool.
    When:  Called during application shutdown (lifespan handler).
    """
    await engine.dispose()
