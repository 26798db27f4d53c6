"""
Dialect-aware INSERT construct for upsert statements.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def dialect_insert(session: Session, model: Any) -> Any:
    """
    Return an INSERT for ``model`` that supports ``on_conflict_do_*``.

    PostgreSQL is the production store; SQLite is accepted so the
    repositories can run against a throwaway database in tests.
    """

    dialect_name = session.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert(model)
    if dialect_name == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Upserts are not supported for dialect {dialect_name!r}.")
