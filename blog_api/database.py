from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from blog_api.config import settings
from blog_api.middleware import install_query_counter


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine with the SQL query counter attached.

    An in-memory SQLite URL gets a single shared connection, since every
    new connection would open an empty database.
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool
    else:
        kwargs = {
            "pool_pre_ping": True,
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
        }
    engine = create_async_engine(url, echo=echo, **kwargs)
    install_query_counter(engine)
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# Module-level engine variable allows tests to override with a test engine.
engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
async_session = build_session_factory(engine)


class Base(DeclarativeBase):
    pass


@asynccontextmanager
async def transactional_session(factory: async_sessionmaker[AsyncSession] = async_session):
    """
    Open a session that commits when the block exits cleanly and rolls
    back when it raises.  Services only flush, so everything done inside
    the block lands or disappears together.
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db():
    """Yield one session per request; the request is its transaction."""
    async with transactional_session() as session:
        yield session
