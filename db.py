from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any
import logging

from sqlalchemy import event, Result, CursorResult
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine

import config
from models.base import Base

"""
Imports of these models are needed to correctly create tables in the database.
For more information see https://stackoverflow.com/questions/7478403/sqlalchemy-classes-across-files
"""
from models.order import Order
from models.order_notification import OrderNotification
from models.subscription import Subscription

logger = logging.getLogger(__name__)

# SQL echo stays off; SQL loggers are configured in utils/logging_config.py
sql_echo = False

engine: AsyncEngine | None = None
session_maker: async_sessionmaker | None = None


def _register_sqlite_listeners(async_engine: AsyncEngine) -> None:
    """
    Take over transaction start from the sqlite driver.

    pysqlite defers BEGIN until the first write, which lets two writers read the
    same row before either locks it. Emitting BEGIN IMMEDIATE ourselves makes the
    write lock part of the transaction start.
    """

    @event.listens_for(async_engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(async_engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def configure_engine(url: str | None = None) -> AsyncEngine:
    """(Re)create the module engine and session factory for the given URL."""
    global engine, session_maker

    url = url or config.DB_URL
    if url.startswith("sqlite") and ":///" in url and ":memory:" not in url:
        db_file = Path(url.split(":///", 1)[1])
        db_file.parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(url, echo=sql_echo)
    if engine.dialect.name == "sqlite":
        _register_sqlite_listeners(engine)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    logger.debug(f"Database engine configured for {engine.url.render_as_string(hide_password=True)}")
    return engine


async def dispose_engine() -> None:
    if engine is not None:
        await engine.dispose()


@asynccontextmanager
async def get_db_session() -> AsyncSession:
    if session_maker is None:
        configure_engine()
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def session_execute(stmt, session: AsyncSession) -> Result[Any] | CursorResult[Any]:
    return await session.execute(stmt)


async def session_flush(session: AsyncSession) -> None:
    await session.flush()


async def session_commit(session: AsyncSession) -> None:
    await session.commit()


async def session_rollback(session: AsyncSession) -> None:
    await session.rollback()


async def create_db_and_tables():
    if engine is None:
        configure_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
