# clinicbook/db/sql.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from clinicbook.core.config import settings


def _enable_sqlite_fks(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(dsn: str, *, echo: bool = False) -> AsyncEngine:
    """
    Build the async engine. Pool tuning only applies to server databases.
    """
    if dsn.startswith("sqlite"):
        engine = create_async_engine(dsn, echo=echo)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_fks)
        return engine

    return create_async_engine(
        dsn,
        echo=echo,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_timeout=settings.DB_POOL_TIMEOUT,
    )


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )


engine = make_engine(settings.SQL_DSN, echo=settings.DB_ECHO)

AsyncSessionLocal = make_sessionmaker(engine)


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """
    Unit of work: commit on success, rollback on any error (cancellation included).
    """
    async with factory() as session:
        async with session.begin():
            yield session


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """
    Provide a DB session for each request.
    Commit when the handler returns, rollback when it raises.
    """
    factory: async_sessionmaker[AsyncSession] = request.app.state.services.session_factory
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def ping_db(session: AsyncSession) -> bool:
    await session.execute(text("SELECT 1"))
    return True


async def init_db(target: AsyncEngine) -> None:
    """
    Create tables that do not exist yet.
    """
    from clinicbook.db.base import Base

    # Register every model on Base.metadata
    from clinicbook.modules.users import models as _users  # noqa: F401
    from clinicbook.modules.doctors import models as _doctors  # noqa: F401
    from clinicbook.modules.appointments import models as _appointments  # noqa: F401

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
