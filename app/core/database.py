from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from app.config import settings

# Transaction pooled connection for request traffic (pooler on port 6543)
# Note: Transaction pooler doesn't support prepared statements, so we disable them
#
# Pool sizing: pool_size=10 base + max_overflow=20 = 30 max connections.
# The notification drain opens up to `notification_concurrency` sessions at once.
engine = create_async_engine(
    settings.database_url,
    echo=False,
    future=True,
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,  # Detects stale connections before use
    pool_recycle=300,  # Recycle connections every 5 min (pooler compatibility)
    pool_timeout=30,  # Wait up to 30s for a connection from pool
    connect_args={
        "statement_cache_size": 0,
        "prepared_statement_cache_size": 0,
        "command_timeout": 60,  # Query timeout in seconds (prevents hung queries)
    },
)

# Direct connection for migrations, advisory locks and sweeps (port 5432)
# Session-level advisory locks require a stable connection, which the
# transaction pooler cannot provide.
direct_engine = create_async_engine(
    settings.database_url_direct,
    echo=False,
    future=True,
    pool_pre_ping=True,
    pool_size=3,
    max_overflow=5,
    connect_args={
        "command_timeout": 300,
    },
)

async_session_maker = sessionmaker(  # type: ignore[call-overload]
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

direct_session_maker = sessionmaker(  # type: ignore[call-overload]
    direct_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields an async database session.

    Commits when the request handler returns, rolls back if it raises.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create all tables (for development only - use Alembic in production)."""
    import app.models  # noqa: F401

    async with direct_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
