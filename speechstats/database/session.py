import pathlib
from typing import Optional

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from speechstats.config import settings


class Base(DeclarativeBase):
    pass


def _ensure_data_dir(url: str):
    if url.startswith("sqlite") and ":memory:" not in url and "///./data/" in url:
        path = pathlib.Path("data")
        path.mkdir(parents=True, exist_ok=True)


async def init_db(url: Optional[str] = None) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create the engine, create all tables and return ``(engine, sessionmaker)``.

    The sessionmaker is handed to ``StatsStore`` by whoever hosts the engine;
    nothing here is kept as process-global state.
    """
    url = url or settings.database_url
    _ensure_data_dir(url)
    engine = create_async_engine(url, echo=False, future=True)
    session_maker = async_sessionmaker(engine, expire_on_commit=False)

    # import models and create tables
    from . import models  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return engine, session_maker
