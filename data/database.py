from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config.settings import settings
from data.schema import Base

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def build_engine(url: str, **kwargs) -> AsyncEngine:
    engine = create_async_engine(url, echo=False, **kwargs)
    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_conn, _record) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def session_scope(engine: AsyncEngine) -> SessionScope:
    """Return a factory of commit-on-success, rollback-on-error sessions."""
    factory = async_sessionmaker(engine, expire_on_commit=False)

    @asynccontextmanager
    async def scope() -> AsyncGenerator[AsyncSession]:
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return scope


engine = build_engine(settings.DATABASE_URL)
get_session = session_scope(engine)


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create all tables (idempotent)."""
    target = target or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if target.dialect.name == "sqlite" and target.url.database not in (None, "", ":memory:"):
            # Enable WAL mode for better concurrent read/write performance
            await conn.execute(text("PRAGMA journal_mode=WAL"))
