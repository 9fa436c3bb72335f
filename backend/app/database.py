"""Database engine, session factory, and declarative base.

All tables (users, company_registry, research_submissions) live in a single
schema. `get_db()` is the FastAPI dependency: it commits when the request
handler returns and rolls back when it raises.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

if settings.database_url.startswith("sqlite"):
    # SQLite (tests / local experiments) doesn't take pool sizing arguments
    engine_args: dict = {}
else:
    engine_args = {"pool_size": 20, "max_overflow": 10}

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug and settings.environment == "development",
    **engine_args,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    """Yield a session; commit on success, roll back on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
