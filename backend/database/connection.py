import logging
from typing import Optional

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy import text

from config import get_settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def get_engine() -> AsyncEngine:
    """Create the async engine on first use."""
    global _engine, _session_factory

    if _engine is None:
        settings = get_settings()
        if not settings.DATABASE_URL:
            raise ValueError("DATABASE_URL environment variable is not set")

        _engine = create_async_engine(
            settings.DATABASE_URL,
            echo=False,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            connect_args={"ssl": "require"} if settings.DATABASE_SSL else {}
        )
        _session_factory = async_sessionmaker(
            _engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )

    return _engine


async def get_db():
    """Dependency to get database session"""
    get_engine()
    async with _session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """Verify the database connection and that the reconciliation tables exist"""
    try:
        async with get_engine().begin() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("PostgreSQL connection successful")

            result = await conn.execute(text("""
                SELECT table_name
                FROM information_schema.tables
                WHERE table_schema = 'public'
                AND table_name IN ('bank_transactions', 'ledger_transactions')
            """))
            tables = [row[0] for row in result.fetchall()]
            logger.info(f"Reconciliation tables present: {tables}")

            return True
    except Exception as e:
        logger.error(f"Database initialization error: {e}")
        raise
