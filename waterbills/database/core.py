from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from waterbills.config import config


class Base(DeclarativeBase):
    pass


def make_engine(url: Optional[str] = None) -> AsyncEngine:
    return create_async_engine(url or config.DATABASE_URL, echo=False)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


async def create_tables(bind: AsyncEngine):
    """Create missing tables. Production schemas go through alembic."""
    # Registers every model on Base.metadata
    from waterbills.database import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
