from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Built by init_engine() at startup and released by dispose_engine() at shutdown.
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker] = None


def init_engine(database_url: str, **engine_kwargs) -> async_sessionmaker:
    global engine, AsyncSessionLocal
    if not database_url.startswith("sqlite"):
        # pool_pre_ping: check connection is alive before use (avoids "connection is closed" errors
        # when DB or network closed idle connections).
        # pool_recycle: discard connections after this many seconds to avoid stale connections.
        engine_kwargs.setdefault("pool_pre_ping", True)
        engine_kwargs.setdefault("pool_recycle", 300)
    engine = create_async_engine(database_url, echo=False, future=True, **engine_kwargs)
    AsyncSessionLocal = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return AsyncSessionLocal


async def dispose_engine() -> None:
    global engine, AsyncSessionLocal
    if engine is not None:
        await engine.dispose()
    engine = None
    AsyncSessionLocal = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    if AsyncSessionLocal is None:
        raise RuntimeError("Database engine is not initialised; call init_engine() first")
    async with AsyncSessionLocal() as session:
        yield session
