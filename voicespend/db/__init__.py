from __future__ import annotations

import os
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession

from voicespend.db.models import Base


def create_engine(db_url: str) -> AsyncEngine:
    engine = create_async_engine(
        url=db_url,
        echo=False,
        pool_pre_ping=True,
        connect_args={"check_same_thread": False} if db_url.startswith("sqlite+") else {},
    )

    # SQLite тюнинг: WAL + foreign_keys
    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_conn, connection_record):
        if db_url.startswith("sqlite"):
            cur = dbapi_conn.cursor()
            if ":memory:" not in db_url:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
            cur.execute("PRAGMA foreign_keys=ON;")
            cur.close()

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, autoflush=False, expire_on_commit=False)


async def init_db(engine: AsyncEngine, db_url: str) -> None:
    # создать папку, если надо
    if db_url.startswith("sqlite+") and ":memory:" not in db_url:
        path = db_url.split("///", 1)[-1]
        d = os.path.dirname(path) or "."
        os.makedirs(d, exist_ok=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
