"""
orchestrator/startup.py

Fail-fast database checks run before any loop starts, shared by the HTTP
app lifespan and the CLI entry point.
"""

from __future__ import annotations

import logging

from sqlalchemy import inspect as sa_inspect
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

import db.models  # noqa: F401 registers ORM models on Base.metadata
from db.base import Base
from db.session import get_engine

logger = logging.getLogger(__name__)


def check_db(engine: Engine | None = None) -> None:
    """Run SELECT 1. Raises RuntimeError if the DB is unreachable."""
    engine = engine or get_engine()
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        raise RuntimeError("Database unavailable.") from exc


def check_schema(engine: Engine | None = None) -> None:
    """
    Compare Base.metadata table names against the live DB schema.

    Every orchestration table must exist; startup aborts otherwise so that
    migrations are applied before any target is dispatched. Does NOT
    auto-migrate.
    """

    inspector = sa_inspect(engine or get_engine())
    actual: set[str] = set(inspector.get_table_names())
    expected: set[str] = set(Base.metadata.tables.keys())
    missing = expected - actual

    if missing:
        logger.critical(
            "Schema mismatch: %d table(s) defined in ORM metadata are absent from "
            "the database: %s. Run 'alembic upgrade head' and restart.",
            len(missing),
            ", ".join(sorted(missing)),
        )
        raise RuntimeError(
            f"Schema mismatch: {len(missing)} table(s) missing from the database "
            f"({', '.join(sorted(missing))}). Run migrations and restart."
        )


def verify_database(engine: Engine | None = None) -> None:
    check_db(engine)
    logger.info("Database connectivity confirmed")
    check_schema(engine)
    logger.info("Database schema validated")
