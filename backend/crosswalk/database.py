from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine for one application lifespan."""
    is_sqlite = database_url.startswith("sqlite")
    is_memory = is_sqlite and (database_url.endswith("://") or ":memory:" in database_url)

    kwargs: dict = {"echo": echo}
    if is_memory:
        kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
    elif not is_sqlite:
        kwargs.update(pool_pre_ping=True, pool_size=5, max_overflow=10)

    engine = create_async_engine(database_url, **kwargs)

    # WAL + busy timeout for SQLite so parallel recomputation can write
    if is_sqlite:
        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if not is_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA busy_timeout=5000")
                cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.session_factory() as session:
        yield session


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


async def check_db_connection(engine: AsyncEngine) -> bool:
    """Test database connectivity. Returns True if OK."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True
