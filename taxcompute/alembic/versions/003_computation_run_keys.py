"""computation_run_keys

Revision ID: 003_computation_run_keys
Revises: 002_deduction_records
Create Date: 2026-10-19 00:00:00.000000 UTC

Adds computation_run_keys: idempotency keys bound to a run that already existed
when the keyed request arrived. Unique per (user, assessment year, key).
Also documents the TAXPAID and CFLOSS record kinds on deduction_records.section.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "003_computation_run_keys"
down_revision: Union[str, None] = "002_deduction_records"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "computation_run_keys",
        sa.Column("id", sa.String(36), nullable=False, comment="UUID row identifier"),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("assessment_year", sa.String(7), nullable=False),
        sa.Column("idempotency_key", sa.String(128), nullable=False),
        sa.Column("run_id", sa.String(36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["run_id"], ["computation_runs.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "user_id", "assessment_year", "idempotency_key",
            name="uq_computation_run_keys_user_year_key",
        ),
    )
    op.create_index(
        "ix_computation_run_keys_run_id",
        "computation_run_keys",
        ["run_id"],
        unique=False,
    )
    op.alter_column(
        "deduction_records",
        "section",
        existing_type=sa.String(8),
        existing_nullable=False,
        comment="'80C', '80D', 'OTHER', 'TAXPAID' or 'CFLOSS'",
        existing_comment="'80C', '80D' or 'OTHER'",
    )


def downgrade() -> None:
    op.alter_column(
        "deduction_records",
        "section",
        existing_type=sa.String(8),
        existing_nullable=False,
        comment="'80C', '80D' or 'OTHER'",
        existing_comment="'80C', '80D', 'OTHER', 'TAXPAID' or 'CFLOSS'",
    )
    op.drop_index("ix_computation_run_keys_run_id", table_name="computation_run_keys")
    op.drop_table("computation_run_keys")
