"""
Repository for per-domain rate profiles.

The caller controls commit/rollback; this repository never commits on its own.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.domain_rate_profile import DomainRateProfile
from db.repositories.dialects import dialect_insert


class DomainProfileRepository:
    """
    Upsert semantics: ``insert_if_absent`` never raises on a duplicate domain,
    so concurrent first references to a new domain converge on one row.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def insert_if_absent(
        self,
        *,
        domain: str,
        user_agents: list[str],
        header_profiles: dict[str, dict[str, str]],
        min_delay_ms: int,
        max_delay_ms: int,
    ) -> bool:
        """
        Insert a profile row unless one already exists for ``domain``.

        Returns True when this call created the row.
        """

        payload: dict[str, Any] = {
            "domain": domain,
            "user_agents": user_agents,
            "header_profiles": header_profiles,
            "min_delay_ms": min_delay_ms,
            "max_delay_ms": max_delay_ms,
        }
        stmt = (
            dialect_insert(self._session, DomainRateProfile)
            .values(**payload)
            .on_conflict_do_nothing(index_elements=["domain"])
        )
        result = self._session.execute(stmt)
        return bool(result.rowcount)

    def get(self, domain: str) -> DomainRateProfile | None:
        return self._session.get(DomainRateProfile, domain)

    def get_for_update(self, domain: str) -> DomainRateProfile | None:
        stmt = select(DomainRateProfile).where(DomainRateProfile.domain == domain).with_for_update()
        return self._session.scalars(stmt).one_or_none()
