"""deduction_records

Revision ID: 002_deduction_records
Revises: 001_computation_runs
Create Date: 2026-10-19 00:00:00.000000 UTC

Adds the deduction_records table for itemised 80C / 80D / other-section claims.
Idempotent on (user, assessment year, section, idempotency key).
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "002_deduction_records"
down_revision: Union[str, None] = "001_computation_runs"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "deduction_records",
        sa.Column("id", sa.String(36), nullable=False, comment="UUID row identifier"),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("assessment_year", sa.String(7), nullable=False),
        sa.Column("section", sa.String(8), nullable=False, comment="'80C', '80D' or 'OTHER'"),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column("components", JSON_TYPE, nullable=False),
        sa.Column("breakdown", JSON_TYPE, nullable=False),
        sa.Column("total_claimed", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_allowed", sa.Numeric(14, 2), nullable=False),
        sa.Column("cap_applied", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "assessment_year", "section", "idempotency_key",
            name="uq_deduction_records_user_year_section_key",
        ),
    )
    op.create_index(
        "ix_deduction_records_user_id",
        "deduction_records",
        ["user_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_deduction_records_user_id", table_name="deduction_records")
    op.drop_table("deduction_records")
