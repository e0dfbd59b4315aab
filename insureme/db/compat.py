"""
Dialect-aware SQL helpers - PostgreSQL in production, SQLite in tests.
"""
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def insert_for(session: AsyncSession, table):
    """
    Return the dialect-specific INSERT construct for ``table``.

    Both dialects support ``on_conflict_do_update``; the generic
    sqlalchemy.insert does not.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upsert is not supported on dialect '{dialect}'")


def upsert_statement(
    session: AsyncSession,
    table,
    values: dict[str, Any],
    *,
    conflict_column: str,
    update_values: dict[str, Any],
):
    """INSERT ... ON CONFLICT (conflict_column) DO UPDATE SET update_values"""
    stmt = insert_for(session, table).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=[conflict_column],
        set_=update_values,
    )
