"""
models/computation_run_key.py — Idempotency keys bound to an existing run.

Table: computation_run_keys
A keyed request answered by an existing run (input hash or cache hit) records
its key here, so a retry with that key returns the same run even after the
payload changed. Keys a run was inserted with stay on computation_runs.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from taxcompute.database import Base


class ComputationRunKeyORM(Base):
    __tablename__ = "computation_run_keys"
    __table_args__ = (
        UniqueConstraint("user_id", "assessment_year", "idempotency_key", name="uq_computation_run_keys_user_year_key"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    assessment_year: Mapped[str] = mapped_column(String(7), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False)
    run_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("computation_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
