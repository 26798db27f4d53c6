"""create scrape orchestration tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:30:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "scraper_site_configurations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "site_domain",
            sa.String(length=255),
            nullable=False,
            comment="Hostname the selectors were written for",
        ),
        sa.Column(
            "selectors",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            comment="Extraction selectors, opaque to the orchestrator",
        ),
        sa.Column("requires_browser_automation", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_scraper_site_configurations_site_domain",
        "scraper_site_configurations",
        ["site_domain"],
        unique=False,
    )

    op.create_table(
        "scrape_targets",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("canonical_product_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("seller_name", sa.String(length=255), nullable=False),
        sa.Column("exact_product_url", sa.String(length=2048), nullable=False),
        sa.Column("site_configuration_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("is_active_for_scraping", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "scraping_frequency_override",
            sa.String(length=64),
            nullable=True,
            comment="Short token such as PT4H / P1D, or a raw duration string",
        ),
        sa.Column("last_scraped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "next_scrape_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="NULL means due immediately",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(
            ["site_configuration_id"],
            ["scraper_site_configurations.id"],
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_scrape_targets_active_next_scrape",
        "scrape_targets",
        ["is_active_for_scraping", "next_scrape_at"],
        unique=False,
    )
    op.create_index(
        "ix_scrape_targets_canonical_product_id",
        "scrape_targets",
        ["canonical_product_id"],
        unique=False,
    )

    op.create_table(
        "domain_rate_profiles",
        sa.Column("domain", sa.String(length=255), nullable=False),
        sa.Column("user_agents", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column(
            "header_profiles",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            comment="Persona key -> header map",
        ),
        sa.Column("min_delay_ms", sa.Integer(), nullable=False),
        sa.Column("max_delay_ms", sa.Integer(), nullable=False),
        sa.Column("last_request_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_allowed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint(
            "min_delay_ms >= 0 AND max_delay_ms >= min_delay_ms",
            name="ck_domain_rate_profiles_delay_window",
        ),
        sa.PrimaryKeyConstraint("domain"),
    )
    op.create_index(
        "ix_domain_rate_profiles_next_allowed_at",
        "domain_rate_profiles",
        ["next_allowed_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_domain_rate_profiles_next_allowed_at", table_name="domain_rate_profiles")
    op.drop_table("domain_rate_profiles")
    op.drop_index("ix_scrape_targets_canonical_product_id", table_name="scrape_targets")
    op.drop_index("ix_scrape_targets_active_next_scrape", table_name="scrape_targets")
    op.drop_table("scrape_targets")
    op.drop_index(
        "ix_scraper_site_configurations_site_domain",
        table_name="scraper_site_configurations",
    )
    op.drop_table("scraper_site_configurations")
