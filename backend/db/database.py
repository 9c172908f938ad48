from contextlib import contextmanager

from sqlalchemy import event
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.config import Settings
from core.errors import StoreUnavailable


class Base(DeclarativeBase):
    pass


def create_engine(settings: Settings) -> AsyncEngine:
    """Build the async engine for the configured database.

    The engine is owned by the application lifespan: created on startup and
    disposed on shutdown.
    """
    engine = create_async_engine(settings.database_url, echo=settings.database_echo)

    if engine.dialect.name == "sqlite":
        # SQLite leaves foreign keys off unless asked per connection.
        @event.listens_for(engine.sync_engine, "connect")
        def _enable_sqlite_fks(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_db_and_tables(engine: AsyncEngine):
    # Register the models on Base.metadata before creating tables.
    from db import blob  # noqa: F401
    from db.inventory import item  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@contextmanager
def translate_db_errors():
    """Re-raise connectivity failures as the retryable StoreUnavailable."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        raise StoreUnavailable(f"Database unavailable: {e.__class__.__name__}") from e
