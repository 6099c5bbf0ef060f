"""
models/deduction_record.py — SQLAlchemy ORM model for itemised deduction claims.

Table: deduction_records
One row per (user, assessment year, section, idempotency key). Resubmitting
with the same key returns the stored row unchanged.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from taxcompute.database import Base, JSONType


class DeductionRecordORM(Base):
    """
    components: the submitted line items, amounts normalized to paise strings.
    breakdown: per-section {claimed, cap, allowed, cap_applied, eligible}.
    """
    __tablename__ = "deduction_records"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "assessment_year", "section", "idempotency_key",
            name="uq_deduction_records_user_year_section_key",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    assessment_year: Mapped[str] = mapped_column(String(7), nullable=False)
    section: Mapped[str] = mapped_column(
        String(8),
        nullable=False,
        comment="'80C', '80D', 'OTHER', 'TAXPAID' or 'CFLOSS'",
    )
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    components: Mapped[list] = mapped_column(JSONType, nullable=False)
    breakdown: Mapped[dict] = mapped_column(JSONType, nullable=False)
    total_claimed: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_allowed: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    cap_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
