"""Async SQLAlchemy engine and session factory.

Learn: One pooled engine for the user service, one AsyncSession per
request via the get_db dependency. The gateway never touches the
database; it only verifies tokens and forwards.

expire_on_commit=False matters here: the issuer commits and then builds
the response from the account it just loaded, and an expired instance
would try to lazy-load outside the greenlet.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from taskhub.config import settings


def build_engine(url: str | None = None) -> AsyncEngine:
    """Engine for `url` (default: TASKHUB_DATABASE_URL)."""
    url = url or settings.database_url
    options = {"echo": settings.debug, "pool_pre_ping": True}
    # SQLite (local dev / tests) has no sized pool
    if not url.startswith("sqlite"):
        options["pool_size"] = settings.db_pool_size
        options["max_overflow"] = settings.db_max_overflow
    return create_async_engine(url, **options)


engine = build_engine()

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db():
    """FastAPI dependency: one session per request.

    Anything left uncommitted when the handler raises is rolled back.
    """
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
