"""Database engine and session factory helpers."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .base import Base
from . import models  # noqa: F401  # ensure models are imported for metadata


def resolve_async_database_url(raw_url: str) -> str:
    url = make_url(raw_url)
    driver_map = {
        "sqlite": "sqlite+aiosqlite",
        "sqlite+pysqlite": "sqlite+aiosqlite",
        "postgresql": "postgresql+asyncpg",
        "postgresql+psycopg2": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "mysql": "mysql+aiomysql",
        "mysql+pymysql": "mysql+aiomysql",
        "mariadb": "mariadb+aiomysql",
    }
    async_driver = driver_map.get(url.drivername, url.drivername)
    url = url.set(drivername=async_driver)
    if async_driver.startswith("sqlite") and url.database and url.database != ":memory:":
        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
    return url.render_as_string(hide_password=False)


def create_engine(raw_url: str) -> AsyncEngine:
    return create_async_engine(
        resolve_async_database_url(raw_url),
        echo=False,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create missing tables."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    "Base",
    "create_engine",
    "create_session_factory",
    "init_models",
    "resolve_async_database_url",
]
