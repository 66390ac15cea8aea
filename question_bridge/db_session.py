"""
SQLAlchemy async session setup for Question Bridge.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from question_bridge.config import DATABASE_URL as _CONFIGURED_URL

DATABASE_URL = _CONFIGURED_URL

# Convert postgres:// to postgresql+asyncpg:// for SQLAlchemy async
if DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)

# Create async engine
async_engine = create_async_engine(
    DATABASE_URL,
    echo=False,  # Set to True for SQL query logging
    future=True,
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_session():
    """
    Dependency function to get database session.

    Usage in FastAPI endpoints:
        @router.post("/endpoint")
        async def my_endpoint(db: AsyncSession = Depends(get_async_session)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_async_session_context():
    """
    Context manager for getting database session in background tasks.

    Usage in background tasks:
        async with get_async_session_context() as db:
            # Use db session
            ...
    """
    return AsyncSessionLocal()


async def create_tables() -> None:
    """Create all tables for local/dev databases (no migrations)."""
    from question_bridge.models import Base

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
