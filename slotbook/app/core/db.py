"""Async SQLAlchemy database helpers.

Single authoritative module providing:
    * make_session_factory(url) for explicit wiring (engine, tests, CLI)
    * init_db(engine, force=...)
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..domain.models import Base
from . import constants


# Connection execution option marking a transaction that never writes.
READ_ONLY_OPTION = "slotbook_read_only"


# =====================================================
# ⚙️ Engine / Session factory
# =====================================================
def _install_sqlite_write_lock(engine: AsyncEngine) -> None:
    """Make SQLite write transactions start with BEGIN IMMEDIATE.

    pysqlite/aiosqlite defer BEGIN until the first write, which lets two
    booking transactions both pass the conflict check before either writes.
    Taking the write lock up front serializes them; the loser waits (busy
    timeout) and then sees the winner's committed row. Connections carrying
    ``READ_ONLY_OPTION`` use a deferred BEGIN so reads do not queue behind
    writers.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # noqa: ARG001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(READ_ONLY_OPTION):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


def _make_engine(url: str, **engine_kwargs) -> AsyncEngine:
    """Create an async engine."""
    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            echo=constants.SQL_ECHO_ENABLED,
            future=True,
            connect_args={"timeout": 30},
            **engine_kwargs,
        )
        _install_sqlite_write_lock(engine)
        return engine
    engine_kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, echo=constants.SQL_ECHO_ENABLED, future=True, **engine_kwargs)


def make_session_factory(url: str, **engine_kwargs) -> async_sessionmaker[AsyncSession]:
    """Build a dedicated engine + session factory for ``url``."""
    return async_sessionmaker(_make_engine(url, **engine_kwargs), expire_on_commit=False)


# =====================================================
# 🧩 DB Init helpers
# =====================================================
async def init_db(engine: AsyncEngine, force: bool = False) -> None:
    """Create database schema (tests, local development; production uses alembic)."""
    async with engine.begin() as conn:
        if force:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


# =====================================================
# 📦 Export
# =====================================================
__all__ = [
    "READ_ONLY_OPTION",
    "make_session_factory",
    "init_db",
]
