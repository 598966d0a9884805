from collections.abc import AsyncGenerator
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from tracksub.core.config import settings


class Base(DeclarativeBase):
    pass


# ─── Async (API) ───────────────────────────────
engine = create_async_engine(settings.database_url, pool_pre_ping=True)
async_session = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


# ─── Sync (Celery tasks) ───────────────────────
@lru_cache
def get_sync_engine() -> Engine:
    return create_engine(settings.database_url_sync, pool_pre_ping=True)


def sync_session_factory() -> sessionmaker:
    return sessionmaker(bind=get_sync_engine(), expire_on_commit=False)
