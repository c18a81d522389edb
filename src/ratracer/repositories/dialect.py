"""Dialect-aware INSERT ... ON CONFLICT DO NOTHING.

PostgreSQL and SQLite both support ``ON CONFLICT DO NOTHING`` but SQLAlchemy
exposes it through dialect-specific ``insert`` constructs.
"""

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


async def insert_ignore(
    session: AsyncSession, model: Any, values: dict, index_elements: list[str]
) -> bool:
    """Insert a row unless it collides on ``index_elements``.

    Args:
        session: Active async session
        model: SQLModel table class
        values: Column values for the new row
        index_elements: Columns of the unique constraint to check

    Returns:
        True if the row was inserted, False if a conflicting row already existed
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values)
    else:
        raise NotImplementedError(f"Unsupported database dialect: {dialect}")

    stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    result = await session.execute(stmt)
    return result.rowcount == 1  # type: ignore[attr-defined]
