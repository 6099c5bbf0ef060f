"""
models/computation_run.py — SQLAlchemy ORM model for persisted computations.

Table: computation_runs
One row per distinct (user, assessment year, canonical input hash). Client
idempotency keys are unique per (user, assessment year) as well; NULL keys do
not collide.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from taxcompute.database import Base, JSONType


class ComputationRunORM(Base):
    """
    result_data: {"result": ComputationResult, "comparison": RegimeComparison | null}
    serialized with model_dump(mode="json"). Never updated after insert.
    regime: Denormalized requested regime for analytics without parsing JSON.
    """
    __tablename__ = "computation_runs"
    __table_args__ = (
        UniqueConstraint("user_id", "assessment_year", "input_hash", name="uq_computation_runs_user_year_hash"),
        UniqueConstraint("user_id", "assessment_year", "idempotency_key", name="uq_computation_runs_user_year_key"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    assessment_year: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        comment="e.g. '2025-26'",
    )
    input_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="SHA-256 hex of the canonical normalized request",
    )
    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
    )
    regime: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        comment="'old' or 'new' — the regime that was requested",
    )
    result_data: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
