from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from sqlalchemy.orm import declarative_base

# Base class for all ORM models
Base = declarative_base()


def build_engine(url: str) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    SQLite gets a busy timeout so the poller and request handlers can
    write concurrently; PostgreSQL gets production-safe pooling.
    """
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": 5},
        )
    return create_async_engine(
        url,
        echo=False,              # NEVER enable in production
        pool_size=10,            # base connection pool size
        max_overflow=20,         # extra connections under load
        pool_timeout=30,         # seconds to wait for a connection
        pool_recycle=1800,       # recycle connections every 30 min
        pool_pre_ping=True,      # validate connections before use
    )


async def init_db(bind: AsyncEngine) -> None:
    """Create all tables (idempotent)."""
    # Models must be imported so their tables are registered on Base
    from hnreader.models import hn  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
