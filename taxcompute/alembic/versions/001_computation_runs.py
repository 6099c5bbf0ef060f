"""computation_runs

Revision ID: 001_computation_runs
Revises:
Create Date: 2026-10-19 00:00:00.000000 UTC

Creates the computation_runs table. One row per (user, assessment year,
canonical input hash); client idempotency keys are unique per (user, year) too.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_computation_runs"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "computation_runs",
        sa.Column("id", sa.String(36), nullable=False, comment="UUID row identifier"),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("assessment_year", sa.String(7), nullable=False, comment="e.g. '2025-26'"),
        sa.Column(
            "input_hash", sa.String(64), nullable=False,
            comment="SHA-256 hex of the canonical normalized request",
        ),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column(
            "regime", sa.String(3), nullable=False,
            comment="'old' or 'new' — the regime that was requested",
        ),
        sa.Column("result_data", JSON_TYPE, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "assessment_year", "input_hash",
            name="uq_computation_runs_user_year_hash",
        ),
        sa.UniqueConstraint(
            "user_id", "assessment_year", "idempotency_key",
            name="uq_computation_runs_user_year_key",
        ),
    )
    op.create_index(
        "ix_computation_runs_user_id",
        "computation_runs",
        ["user_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_computation_runs_user_id", table_name="computation_runs")
    op.drop_table("computation_runs")
