import asyncio
from contextlib import asynccontextmanager
from typing import Callable, AsyncContextManager, Optional, Tuple

from sqlalchemy import MetaData, event
from sqlalchemy.ext.asyncio import (
    create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
)

Gated = Callable[[], AsyncContextManager[None]]

# plain scheme -> async driver scheme
ASYNC_SCHEMES = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
)

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA busy_timeout=5000;",
    "PRAGMA synchronous=NORMAL;",
)


def async_url(url: str) -> str:
    for plain, driver in ASYNC_SCHEMES:
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


def _db_gate(limit: int) -> Gated:
    """Bound concurrent store operations to what the pool can serve."""
    sem = asyncio.Semaphore(max(1, limit))

    @asynccontextmanager
    async def gated():
        async with sem:
            yield

    return gated


def make_async_engine(
    database_url: str,
    *,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    gate_limit: Optional[int] = None,
) -> Tuple[AsyncEngine, async_sessionmaker, Gated]:
    db_url = async_url(database_url)
    is_sqlite = db_url.startswith("sqlite+aiosqlite://")

    kw = dict(future=True, pool_pre_ping=True)
    if not is_sqlite:
        kw.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
        )
    engine = create_async_engine(db_url, **kw)

    if is_sqlite:
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, _):
            cur = dbapi_connection.cursor()
            for pragma in SQLITE_PRAGMAS:
                cur.execute(pragma)
            cur.close()

    SessionAsync = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return engine, SessionAsync, _db_gate(gate_limit or pool_size)


async def create_schema(engine: AsyncEngine, metadata: MetaData) -> None:
    """Create missing tables; existing ones are left untouched."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
