"""
models/__init__.py — imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.
"""
from taxcompute.models.computation_run import ComputationRunORM
from taxcompute.models.computation_run_key import ComputationRunKeyORM
from taxcompute.models.deduction_record import DeductionRecordORM

__all__ = ["ComputationRunORM", "ComputationRunKeyORM", "DeductionRecordORM"]
