"""reference_list_and_single_active

Revision ID: 4c2d8e1a7b63
Revises: 1a7c3e5f9b20
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4c2d8e1a7b63"
down_revision: Union[str, Sequence[str], None] = "1a7c3e5f9b20"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Curated reference list membership, used by aggregation validation.
    op.add_column(
        "works",
        sa.Column("on_reference_list", sa.Boolean(), server_default=sa.false(), nullable=False),
    )
    op.create_index(op.f("ix_works_on_reference_list"), "works", ["on_reference_list"], unique=False)

    # At most one active configuration per family.
    op.create_index(
        "uq_scoring_configurations_active_family",
        "scoring_configurations",
        ["family"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )


def downgrade() -> None:
    op.drop_index("uq_scoring_configurations_active_family", table_name="scoring_configurations")
    op.drop_index(op.f("ix_works_on_reference_list"), table_name="works")
    op.drop_column("works", "on_reference_list")
