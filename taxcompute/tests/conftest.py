"""
Test configuration for taxcompute tests.

sys.path is configured so 'from taxcompute...' resolves whether pytest runs
from the repository root or from taxcompute/.

Database tests run against in-memory SQLite (aiosqlite) with a StaticPool so
every session in a test shares one connection. pysqlite's own transaction
handling is switched off so SAVEPOINTs (db.begin_nested()) behave like they do
on PostgreSQL.
"""
import os
import sys
from pathlib import Path

_package_dir = Path(__file__).parent.parent        # .../taxcompute/
_project_root = _package_dir.parent                # repository root

if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

# Must be set before taxcompute.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("RUN_MIGRATIONS_ON_STARTUP", "false")

import pytest_asyncio  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine, AsyncSession  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from taxcompute.database import Base  # noqa: E402
import taxcompute.models  # noqa: E402,F401  registers ORM models on Base.metadata


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
