from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool


class Base(DeclarativeBase):
    pass


def make_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """
    Süreç kökünde bir kez kurulur ve constructor'lar üzerinden aşağı geçirilir.
    sqlite (test) için havuz kapalı: her session kendi bağlantısını açar.
    """
    opts = {"echo": echo}
    if database_url.startswith("sqlite"):
        opts["poolclass"] = NullPool
    else:
        opts["pool_pre_ping"] = True
    return create_async_engine(database_url, **opts)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models(engine: AsyncEngine) -> None:
    from signwatch.persistence import models  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
