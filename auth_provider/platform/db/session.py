from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from auth_provider.platform.db.base import Base
from auth_provider.platform.exceptions import ServerMisconfigured


class Database:
    """Engine and session factory for one DATABASE_URL."""

    def __init__(self, url: str, echo: bool = False):
        if url.startswith("sqlite"):
            # aiosqlite connections must not outlive the event loop that opened them
            engine_kwargs = {"poolclass": NullPool}
        else:
            engine_kwargs = {
                "pool_pre_ping": True,
                "pool_recycle": 1800,
                "pool_size": 20,
                "max_overflow": 30,  # (burst capacity)
                "pool_timeout": 30,
            }
        self.engine = create_async_engine(url, echo=echo, future=True, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            self.engine, expire_on_commit=False, autoflush=False
        )

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def create_all(self):
        from auth_provider.platform.db import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self):
        await self.engine.dispose()


def get_database(request: Request) -> Database:
    database = getattr(request.app.state, "database", None)
    if database is None:
        raise ServerMisconfigured()
    return database


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency that provides a DB session and closes it afterwards."""
    database = get_database(request)
    async with database.session() as session:
        yield session
