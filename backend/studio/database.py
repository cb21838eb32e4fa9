from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import Settings, get_settings


def build_engine(settings: Settings) -> AsyncEngine:
    # seat and credit checks rely on SELECT ... FOR UPDATE row locks
    return create_async_engine(
        settings.database_url,
        echo=settings.echo_sql,
        isolation_level="READ COMMITTED",
        pool_pre_ping=True,
        pool_recycle=1800,
    )


engine = build_engine(get_settings())

session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(engine, expire_on_commit=False)
