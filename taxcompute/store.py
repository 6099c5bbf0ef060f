"""
store.py — Data access facade for computation runs and deduction records.

Design principles:
  - All functions are async and accept an AsyncSession parameter
  - No raw SQL: ORM-only queries
  - Logs only run_id / record_id / user_id / hash prefix — never amounts
  - Returns domain Pydantic objects (not ORM instances) so callers are persistence-agnostic
  - Every call is bounded by settings.store_timeout_seconds

Idempotent insert:
  The row is added inside a SAVEPOINT (db.begin_nested()). If a concurrent
  request inserted the same (user, year, hash) or (user, year, key) first, the
  unique constraint fires, only the savepoint is rolled back and the winning row
  is re-read and returned with cached=True. Concurrent identical submissions
  therefore converge on one row.

Idempotency keys:
  A key is stored on the run it created, or in computation_run_keys when an
  existing run answered the keyed request. Lookups by key check both.
"""
import asyncio
import logging
from decimal import Decimal
from typing import Any, Awaitable, Optional, Tuple, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taxcompute.config import settings
from taxcompute.errors import StoreError, StoreTimeoutError
from taxcompute.evaluator.schemas import (
    CarryForwardRecordResponse,
    ComputationResponse,
    ComputationResult,
    DeductionLine,
    DeductionRecordResponse,
    LossOffset,
    RecordResponse,
    RegimeComparison,
    TaxesPaidRecordResponse,
)
from taxcompute.models.computation_run import ComputationRunORM
from taxcompute.models.computation_run_key import ComputationRunKeyORM
from taxcompute.models.deduction_record import DeductionRecordORM

logger = logging.getLogger(__name__)

T = TypeVar("T")

# deduction_records.section values for the non-capped record kinds
RECORD_TAXES_PAID = "TAXPAID"
RECORD_CARRY_FORWARD = "CFLOSS"


# ---------------------------------------------------------------------------
# Timeout / error boundary
# ---------------------------------------------------------------------------

async def _bounded(operation: str, awaitable: Awaitable[T]) -> T:
    """Run a store coroutine under the configured timeout; map driver errors to StoreError."""
    timeout = settings.store_timeout_seconds
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Store operation timed out operation=%s timeout=%ss", operation, timeout)
        raise StoreTimeoutError(operation, timeout) from None
    except SQLAlchemyError as exc:
        logger.warning("Store operation failed operation=%s error=%s", operation, exc.__class__.__name__)
        raise StoreError(f"Store operation '{operation}' failed") from exc


# ---------------------------------------------------------------------------
# ORM → domain
# ---------------------------------------------------------------------------

def _run_to_response(
    orm: ComputationRunORM,
    cached: bool,
    idempotency_key: Optional[str] = None,
) -> ComputationResponse:
    data = orm.result_data
    comparison = data.get("comparison")
    return ComputationResponse(
        run_id=orm.id,
        user_id=orm.user_id,
        assessment_year=orm.assessment_year,
        input_hash=orm.input_hash,
        idempotency_key=idempotency_key or orm.idempotency_key,
        cached=cached,
        persisted=True,
        created_at=orm.created_at,
        result=ComputationResult.model_validate(data["result"]),
        comparison=RegimeComparison.model_validate(comparison) if comparison else None,
    )


def _deduction_to_response(orm: DeductionRecordORM, cached: bool) -> DeductionRecordResponse:
    return DeductionRecordResponse(
        record_id=orm.id,
        user_id=orm.user_id,
        assessment_year=orm.assessment_year,
        section=orm.section,
        idempotency_key=orm.idempotency_key,
        total_claimed=Decimal(orm.total_claimed),
        total_allowed=Decimal(orm.total_allowed),
        cap_applied=orm.cap_applied,
        saved_components=list(orm.components),
        breakdown={key: DeductionLine.model_validate(line) for key, line in orm.breakdown.items()},
        cached=cached,
    )


def _taxes_paid_to_response(orm: DeductionRecordORM, cached: bool) -> TaxesPaidRecordResponse:
    kinds = orm.breakdown
    return TaxesPaidRecordResponse(
        record_id=orm.id,
        user_id=orm.user_id,
        assessment_year=orm.assessment_year,
        idempotency_key=orm.idempotency_key,
        total_tds=Decimal(kinds["tds"]["total"]),
        total_tcs=Decimal(kinds["tcs"]["total"]),
        total=Decimal(orm.total_claimed),
        entries_count={kind: summary["entries"] for kind, summary in kinds.items()},
        saved_entries=list(orm.components),
        cached=cached,
    )


def _carry_forward_to_response(orm: DeductionRecordORM, cached: bool) -> CarryForwardRecordResponse:
    return CarryForwardRecordResponse(
        record_id=orm.id,
        user_id=orm.user_id,
        assessment_year=orm.assessment_year,
        idempotency_key=orm.idempotency_key,
        total_carried_forward=Decimal(orm.total_claimed),
        total_available=Decimal(orm.total_allowed),
        available_offsets={
            loss_type: LossOffset.model_validate(offset) for loss_type, offset in orm.breakdown.items()
        },
        saved_losses=list(orm.components),
        cached=cached,
    )


_RECORD_CONVERTERS = {
    RECORD_TAXES_PAID: _taxes_paid_to_response,
    RECORD_CARRY_FORWARD: _carry_forward_to_response,
}


def _record_to_response(orm: DeductionRecordORM, cached: bool) -> RecordResponse:
    return _RECORD_CONVERTERS.get(orm.section, _deduction_to_response)(orm, cached)


# ---------------------------------------------------------------------------
# Computation runs
# ---------------------------------------------------------------------------

async def _select_run(db: AsyncSession, *criteria: Any) -> Optional[ComputationRunORM]:
    result = await db.execute(select(ComputationRunORM).where(*criteria))
    return result.scalar_one_or_none()


async def _select_run_by_key(
    db: AsyncSession,
    user_id: str,
    assessment_year: str,
    idempotency_key: str,
) -> Optional[ComputationRunORM]:
    """The run inserted with this key, else the run the key was later bound to."""
    orm = await _select_run(
        db,
        ComputationRunORM.user_id == user_id,
        ComputationRunORM.assessment_year == assessment_year,
        ComputationRunORM.idempotency_key == idempotency_key,
    )
    if orm is not None:
        return orm
    result = await db.execute(
        select(ComputationRunORM)
        .join(ComputationRunKeyORM, ComputationRunKeyORM.run_id == ComputationRunORM.id)
        .where(
            ComputationRunKeyORM.user_id == user_id,
            ComputationRunKeyORM.assessment_year == assessment_year,
            ComputationRunKeyORM.idempotency_key == idempotency_key,
        )
    )
    return result.scalar_one_or_none()


async def find_run_by_key(
    db: AsyncSession,
    user_id: str,
    assessment_year: str,
    idempotency_key: str,
) -> Optional[ComputationResponse]:
    """Stored run for a client idempotency key, or None."""
    orm = await _bounded(
        "find_run_by_key",
        _select_run_by_key(db, user_id, assessment_year, idempotency_key),
    )
    return _run_to_response(orm, cached=True, idempotency_key=idempotency_key) if orm else None


async def find_run_by_hash(
    db: AsyncSession,
    user_id: str,
    assessment_year: str,
    input_hash: str,
) -> Optional[ComputationResponse]:
    """Stored run for a canonical input hash, or None."""
    orm = await _bounded(
        "find_run_by_hash",
        _select_run(
            db,
            ComputationRunORM.user_id == user_id,
            ComputationRunORM.assessment_year == assessment_year,
            ComputationRunORM.input_hash == input_hash,
        ),
    )
    return _run_to_response(orm, cached=True) if orm else None


async def get_run(db: AsyncSession, run_id: str) -> Optional[ComputationResponse]:
    """Retrieve a run by id. Returns None if not found (caller raises 404)."""
    orm = await _bounded("get_run", _select_run(db, ComputationRunORM.id == run_id))
    return _run_to_response(orm, cached=True) if orm else None


async def _insert_run(db: AsyncSession, response: ComputationResponse) -> Tuple[ComputationRunORM, bool]:
    orm = ComputationRunORM(
        user_id=response.user_id,
        assessment_year=response.assessment_year,
        input_hash=response.input_hash,
        idempotency_key=response.idempotency_key,
        regime=response.result.regime.value,
        result_data={
            "result": response.result.model_dump(mode="json"),
            "comparison": response.comparison.model_dump(mode="json") if response.comparison else None,
        },
    )
    try:
        async with db.begin_nested():
            db.add(orm)
            await db.flush()
        return orm, True
    except IntegrityError:
        # Lost the race; re-read the row that won
        winner = None
        if response.idempotency_key is not None:
            winner = await _select_run_by_key(
                db, response.user_id, response.assessment_year, response.idempotency_key,
            )
        if winner is None:
            winner = await _select_run(
                db,
                ComputationRunORM.user_id == response.user_id,
                ComputationRunORM.assessment_year == response.assessment_year,
                ComputationRunORM.input_hash == response.input_hash,
            )
        if winner is None:
            raise
        return winner, False


async def insert_run_if_absent(db: AsyncSession, response: ComputationResponse) -> ComputationResponse:
    """
    Persist a freshly computed run unless an equivalent one already exists.

    Returns the stored run: cached=False when this call inserted it, cached=True
    when a concurrent insert won the race.
    """
    orm, created = await _bounded("insert_run", _insert_run(db, response))
    if created:
        logger.info(
            "Saved computation run run_id=%s user_id=%s ay=%s hash=%s",
            orm.id, orm.user_id, orm.assessment_year, orm.input_hash[:12],
        )
    else:
        logger.info("Computation run insert conflict — returning run_id=%s", orm.id)
    return _run_to_response(orm, cached=not created)


async def _bind_key(
    db: AsyncSession,
    run: ComputationResponse,
    idempotency_key: str,
) -> Tuple[Optional[ComputationRunORM], bool]:
    binding = ComputationRunKeyORM(
        user_id=run.user_id,
        assessment_year=run.assessment_year,
        idempotency_key=idempotency_key,
        run_id=run.run_id,
    )
    try:
        async with db.begin_nested():
            db.add(binding)
            await db.flush()
        return None, True
    except IntegrityError:
        # The key was bound to another run first; that run wins
        winner = await _select_run_by_key(db, run.user_id, run.assessment_year, idempotency_key)
        if winner is None:
            raise
        return winner, False


async def bind_run_key(
    db: AsyncSession,
    run: ComputationResponse,
    idempotency_key: str,
) -> ComputationResponse:
    """
    Record that idempotency_key answers with this stored run.

    Returns run under the key, or the run the key was already bound to when a
    concurrent request got there first.
    """
    winner, created = await _bounded("bind_run_key", _bind_key(db, run, idempotency_key))
    if created:
        logger.info("Bound idempotency key to run_id=%s user_id=%s", run.run_id, run.user_id)
        return run.model_copy(update={"idempotency_key": idempotency_key})
    logger.info("Idempotency key already bound, returning run_id=%s", winner.id)
    return _run_to_response(winner, cached=True, idempotency_key=idempotency_key)


# ---------------------------------------------------------------------------
# Deduction records
# ---------------------------------------------------------------------------

def _record_criteria(user_id: str, assessment_year: str, section: str, idempotency_key: Optional[str]) -> list:
    criteria = [
        DeductionRecordORM.user_id == user_id,
        DeductionRecordORM.assessment_year == assessment_year,
        DeductionRecordORM.section == section,
    ]
    if idempotency_key is None:
        criteria.append(DeductionRecordORM.idempotency_key.is_(None))
    else:
        criteria.append(DeductionRecordORM.idempotency_key == idempotency_key)
    return criteria


async def _select_record(db: AsyncSession, criteria: list) -> Optional[DeductionRecordORM]:
    result = await db.execute(select(DeductionRecordORM).where(*criteria))
    return result.scalars().first()


async def find_deduction_record(
    db: AsyncSession,
    user_id: str,
    assessment_year: str,
    section: str,
    idempotency_key: str,
) -> Optional[RecordResponse]:
    orm = await _bounded(
        "find_deduction_record",
        _select_record(db, _record_criteria(user_id, assessment_year, section, idempotency_key)),
    )
    return _record_to_response(orm, cached=True) if orm else None


async def _insert_record(db: AsyncSession, orm: DeductionRecordORM) -> Tuple[DeductionRecordORM, bool]:
    try:
        async with db.begin_nested():
            db.add(orm)
            await db.flush()
        return orm, True
    except IntegrityError:
        winner = await _select_record(
            db, _record_criteria(orm.user_id, orm.assessment_year, orm.section, orm.idempotency_key),
        )
        if winner is None:
            raise
        return winner, False


async def insert_deduction_record_if_absent(
    db: AsyncSession,
    *,
    user_id: str,
    assessment_year: str,
    section: str,
    idempotency_key: Optional[str],
    components: list,
    breakdown: dict,
    total_claimed: Decimal,
    total_allowed: Decimal,
    cap_applied: bool,
) -> RecordResponse:
    """
    Store a deduction record; an existing (user, year, section, key) row wins.
    Without an idempotency key every submission creates a new record.
    """
    orm = DeductionRecordORM(
        user_id=user_id,
        assessment_year=assessment_year,
        section=section,
        idempotency_key=idempotency_key,
        components=components,
        breakdown=breakdown,
        total_claimed=total_claimed,
        total_allowed=total_allowed,
        cap_applied=cap_applied,
    )
    stored, created = await _bounded("insert_deduction_record", _insert_record(db, orm))
    logger.info(
        "Deduction record %s record_id=%s user_id=%s section=%s",
        "saved" if created else "conflict",
        stored.id, user_id, section,
    )
    return _record_to_response(stored, cached=not created)
