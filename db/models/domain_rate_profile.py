"""
db/models/domain_rate_profile.py

Per-origin-domain identity pool and rate gate, keyed by lowercase hostname.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin, UTCDateTime


class DomainRateProfile(Base, TimestampMixin):
    __tablename__ = "domain_rate_profiles"

    domain: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_agents: Mapped[list[str]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
    )
    header_profiles: Mapped[dict[str, dict[str, str]]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        comment="Persona key -> header map",
    )
    min_delay_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    max_delay_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    last_request_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    next_allowed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "min_delay_ms >= 0 AND max_delay_ms >= min_delay_ms",
            name="ck_domain_rate_profiles_delay_window",
        ),
        Index("ix_domain_rate_profiles_next_allowed_at", "next_allowed_at"),
    )
