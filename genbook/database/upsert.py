"""
Dialect-aware INSERT ... ON CONFLICT construction.

PostgreSQL in production, SQLite in tests; both support ON CONFLICT DO UPDATE
with the same API surface.
"""

from sqlalchemy.orm import Session


def dialect_insert(session: Session, table):
    """Return an Insert for ``table`` that supports on_conflict_do_update."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"upsert not supported for dialect {dialect!r}")
    return insert(table)
