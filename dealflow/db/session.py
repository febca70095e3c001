"""
Dealflow database engine and session factory.

Attributes:
    database_url: ``DATABASE_URL`` with the async driver filled in.
    engine: The global async engine instance used for database operations.
    AsyncSessionLocal: Session factory bound to ``engine``. Services take a
        factory argument so tests can substitute their own.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from dealflow.core.config import settings

# Pool sizing for the shared PostgreSQL instance
POOL_KWARGS = {
    "pool_size": 10,
    "max_overflow": 20,
    "pool_timeout": 30,
    "pool_recycle": 1800,
    "pool_pre_ping": True,
}

ASYNC_DRIVERS = {"postgresql": "postgresql+asyncpg", "sqlite": "sqlite+aiosqlite"}


def async_database_url(url: str) -> str:
    """Fill in the async driver for bare ``postgresql://`` / ``sqlite://`` URLs."""
    for bare, driver in ASYNC_DRIVERS.items():
        if url.startswith(f"{bare}://"):
            return url.replace(f"{bare}://", f"{driver}://", 1)
    return url


def build_engine(url: str) -> AsyncEngine:
    """Create the async engine; pool settings only apply to PostgreSQL."""
    if make_url(url).get_backend_name() == "sqlite":
        return create_async_engine(url)
    return create_async_engine(url, **POOL_KWARGS)


database_url = async_database_url(settings.DATABASE_URL)

engine = build_engine(database_url)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)
