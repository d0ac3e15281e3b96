"""
Engine and session management for the auth tables.
"""

from sqlalchemy import URL, Engine, event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel, create_engine


def _enable_sqlite_foreign_keys(engine: Engine):
    # SQLite ignores ON DELETE clauses unless asked per connection.
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _register_tables():
    # Table classes register themselves on SQLModel.metadata at import.
    from cellauth.database.meta import ALL_TABLES

    return ALL_TABLES


class SyncSessionManager:
    """
    A manager for synchronous sessions, used by the CLI and by schema setup:

    manager = SyncSessionManager(conn_url)

    with manager.session() as conn:
        user = conn.get(User, user_id)
    """

    connection_url: str | URL
    engine: Engine
    session: sessionmaker

    def __init__(self, connection_url: str | URL, echo: bool = False):
        self.connection_url = connection_url
        self.engine = create_engine(self.connection_url, echo=echo)
        _enable_sqlite_foreign_keys(self.engine)
        self.session = sessionmaker(self.engine)

    def create_all(self):
        """
        Create every auth table that does not exist yet.
        """
        _register_tables()
        with self.engine.begin() as conn:
            SQLModel.metadata.create_all(conn)


class AsyncSessionManager:
    """
    A manager for asynchronous sessions, used by the API and the sweeper:

    manager = AsyncSessionManager(conn_url)

    async with manager.session() as conn:
        async with conn.begin():
            state = await session_service.get_state(session_id=sid, conn=conn)
    """

    connection_url: str | URL
    engine: AsyncEngine
    session: async_sessionmaker

    def __init__(self, connection_url: str | URL, echo: bool = False):
        self.connection_url = connection_url
        self.engine = create_async_engine(self.connection_url, echo=echo)
        _enable_sqlite_foreign_keys(self.engine.sync_engine)
        self.session = async_sessionmaker(self.engine, expire_on_commit=False)

    async def create_all(self):
        _register_tables()
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self):
        await self.engine.dispose()
