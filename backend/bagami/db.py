from __future__ import annotations
from typing import AsyncGenerator
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from bagami.config import settings

class Base(DeclarativeBase):
    pass

def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    """
    pysqlite/aiosqlite defer BEGIN until the first DML statement, which lets two
    writers read the same balance before either takes the write lock.
    Take the lock up front instead.
    """
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

engine = create_async_engine(settings.database_url, future=True, echo=False)
if engine.dialect.name == "sqlite":
    _serialize_sqlite_writers(engine)

SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session
