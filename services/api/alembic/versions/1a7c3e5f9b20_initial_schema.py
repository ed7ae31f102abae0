"""initial_schema

Revision ID: 1a7c3e5f9b20
Revises:
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "1a7c3e5f9b20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "scoring_configurations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("family", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category_weights", postgresql.JSONB(), nullable=False),
        sa.Column("normalization_method", sa.String(length=20), nullable=False),
        sa.Column("normalization_settings", postgresql.JSONB(), nullable=False),
        sa.Column("missing_data_strategies", postgresql.JSONB(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_draft", sa.Boolean(), nullable=False),
        sa.Column("deployed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_scoring_configurations_version"), "scoring_configurations", ["version"], unique=True)
    op.create_index(op.f("ix_scoring_configurations_family"), "scoring_configurations", ["family"], unique=False)
    op.create_index(op.f("ix_scoring_configurations_is_active"), "scoring_configurations", ["is_active"], unique=False)

    op.create_table(
        "partition_cache",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("partition_key", sa.String(length=100), nullable=False),
        sa.Column("configuration_id", sa.Integer(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("statistics", postgresql.JSONB(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=False),
        sa.Column("calculated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["configuration_id"], ["scoring_configurations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "partition_key",
            "configuration_id",
            name="uq_partition_cache_partition_configuration",
        ),
    )
    op.create_index(op.f("ix_partition_cache_partition_key"), "partition_cache", ["partition_key"], unique=False)
    op.create_index(op.f("ix_partition_cache_configuration_id"), "partition_cache", ["configuration_id"], unique=False)
    op.create_index(op.f("ix_partition_cache_calculated_at"), "partition_cache", ["calculated_at"], unique=False)

    op.create_table(
        "works",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("release_year", sa.Integer(), nullable=True),
        sa.Column("popular_opinion", sa.Float(), nullable=True),
        sa.Column("industry_recognition", sa.Float(), nullable=True),
        sa.Column("cultural_impact", sa.Float(), nullable=True),
        sa.Column("people_quality", sa.Float(), nullable=True),
        sa.Column("financial_performance", sa.Float(), nullable=True),
        sa.Column("vote_count", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_works_release_year"), "works", ["release_year"], unique=False)

    op.create_table(
        "work_nominations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("work_id", sa.Integer(), nullable=False),
        sa.Column("organization", sa.String(length=50), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("won", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["work_id"], ["works.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("work_id", "organization", "year", name="uq_work_nominations"),
    )
    op.create_index(op.f("ix_work_nominations_work_id"), "work_nominations", ["work_id"], unique=False)
    op.create_index(op.f("ix_work_nominations_organization"), "work_nominations", ["organization"], unique=False)

    op.create_table(
        "source_changes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("domain", sa.String(length=50), nullable=False),
        sa.Column("partition_key", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_source_changes_domain"), "source_changes", ["domain"], unique=False)
    op.create_index(op.f("ix_source_changes_partition_key"), "source_changes", ["partition_key"], unique=False)
    op.create_index(op.f("ix_source_changes_changed_at"), "source_changes", ["changed_at"], unique=False)


def downgrade() -> None:
    op.drop_table("source_changes")
    op.drop_table("work_nominations")
    op.drop_table("works")
    op.drop_table("partition_cache")
    op.drop_table("scoring_configurations")
