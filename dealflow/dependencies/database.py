"""
Dealflow Database Dependencies
"""

from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from dealflow.db.session import AsyncSessionLocal


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory handed to services"""
    return AsyncSessionLocal
