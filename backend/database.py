"""
Database connection management for TariffOS.

Jobs and conversation checkpoints share one async SQLAlchemy engine. SQLite
is the default for development/testing when DATABASE_URL is not set.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from config import config

DATABASE_URL = config.DATABASE_URL

# Seconds a SQLite writer waits on a locked database; checkpoints and job rows
# are written from different sessions during a run
SQLITE_BUSY_TIMEOUT = 30


def make_engine(url: str, echo: bool = False) -> AsyncEngine:
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}
    else:
        connect_args = {}
    return create_async_engine(url, echo=echo, connect_args=connect_args)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    # Loaded rows stay readable after commit; the checkpoint store decodes them outside the session
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


async def create_tables(bind: AsyncEngine) -> None:
    """Create the jobs and checkpoints tables if they do not exist."""
    from models.classification_job import Base
    import models.conversation_checkpoint  # noqa: F401  (registers the table)

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


engine = make_engine(DATABASE_URL, echo=config.DATABASE_ECHO)

async_session = make_session_factory(engine)


async def get_session() -> AsyncSession:
    """Dependency that yields an async database session."""
    async with async_session() as session:
        yield session


async def init_db() -> None:
    """Create all tables. Used at application startup."""
    await create_tables(engine)


async def close_db() -> None:
    """Dispose of the engine connection pool."""
    await engine.dispose()
