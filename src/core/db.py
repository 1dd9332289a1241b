from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)


@dataclass(frozen=True)
class Database:
    """
    Engine + session factory owned by the process entry point.

    Handed to the account store and the HTTP layer explicitly; nothing in the
    codebase reaches for a module-level pool.
    """

    engine: AsyncEngine
    sessionmaker: async_sessionmaker[AsyncSession]

    async def dispose(self) -> None:
        await self.engine.dispose()


def init_db(database_url: str) -> Database:
    if not database_url:
        raise RuntimeError("DATABASE_URL is empty; set it in environment.")
    kwargs: dict = {"future": True}
    if not database_url.startswith("sqlite"):
        kwargs.update(pool_pre_ping=True, pool_recycle=1800)
    engine = create_async_engine(database_url, **kwargs)
    return Database(
        engine=engine,
        sessionmaker=async_sessionmaker(engine, expire_on_commit=False),
    )

