"""
Dialect-aware ``INSERT ... ON CONFLICT DO NOTHING``.

PostgreSQL is the production database; SQLite backs the test-suite. Both
dialects expose the same ``on_conflict_do_nothing`` construct.
"""

from typing import Any, Dict, Optional, Sequence

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


async def insert_ignore(
    session: AsyncSession,
    model: Any,
    values: Dict[str, Any],
    index_elements: Sequence[str],
) -> Optional[Any]:
    """
    Insert a row unless it collides with ``index_elements``.

    Returns:
        The new row's primary key, or None when the row already existed.
    """
    dialect = session.get_bind().dialect.name
    insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

    stmt = (
        insert(model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(index_elements))
        .returning(model.id)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()
