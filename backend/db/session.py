"""
MaintainOps Database Session Management

Async SQLAlchemy engine and session factory.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from core.config import get_settings

settings = get_settings()


def enable_sqlite_savepoints(async_engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy own BEGIN on SQLite so SAVEPOINT/begin_nested() behave.

    The sqlite3 driver defers BEGIN until the first DML statement, which
    turns a SAVEPOINT into its own transaction.
    """

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str, **kwargs) -> AsyncEngine:
    """Create an async engine; SQLite URLs get savepoint support."""
    engine = create_async_engine(database_url, **kwargs)
    if database_url.startswith("sqlite"):
        enable_sqlite_savepoints(engine)
    return engine


_pool_kwargs = {}
if not settings.database_url.startswith("sqlite"):
    _pool_kwargs = {"pool_size": 20, "max_overflow": 10}

engine = build_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_pre_ping=True,
    **_pool_kwargs,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass
