from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from sqlalchemy import event

import os
import logging
import atexit

from . import config

logger = logging.getLogger(__name__)

DATABASE_URL = config.DATABASE_URL


def _sqlite_path_from_url(url: str | None) -> str | None:
    if not url:
        return None
    if url.startswith('sqlite+aiosqlite:///'):
        path = url.replace('sqlite+aiosqlite:///', '', 1)
    elif url.startswith('sqlite:///'):
        path = url.replace('sqlite:///', '', 1)
    else:
        return None
    if not path or path.startswith(':memory:'):
        return None
    # normalize leading ./
    if path.startswith('./'):
        path = path[2:]
    return os.path.abspath(path)


def _ensure_sqlite_dir(url: str | None) -> None:
    db_path = _sqlite_path_from_url(url)
    if not db_path:
        return
    parent = os.path.dirname(db_path)
    if parent and not os.path.isdir(parent):
        os.makedirs(parent, exist_ok=True)


_ensure_sqlite_dir(DATABASE_URL)

# Use NullPool to avoid connection-pool objects being bound to a specific
# event loop (which can cause 'bound to a different event loop' errors
# when tests run each case on a fresh loop).
engine = create_async_engine(DATABASE_URL, echo=False, future=True, poolclass=NullPool)


if DATABASE_URL.startswith('sqlite'):
    def _enable_sqlite_foreign_keys(dbapi_con, con_record):
        # SQLite ships with foreign key enforcement off per connection.
        cur = dbapi_con.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()

    event.listen(engine.sync_engine, 'connect', _enable_sqlite_foreign_keys)


async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db():
    # import models so their tables are registered on SQLModel.metadata
    from . import models  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.debug('database schema ensured at %s', DATABASE_URL)


async def reset_db():
    """Drop and recreate every table. Used by tests."""
    from . import models  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)


# Dispose the engine's sync pool at interpreter exit to avoid pool finalizer
# warnings about non-checked-in connections during pytest teardown.
def _dispose_sync_engine():
    sync_engine = getattr(engine, 'sync_engine', None)
    if sync_engine is not None:
        sync_engine.dispose()


atexit.register(_dispose_sync_engine)
