"""
runs.py — Idempotent computation service: compute_or_fetch().

Flow:
  1. Resolve rule set(s) — unsupported year fails fast, before any work
  2. Business-rule validation (all violations at once)
  3. Normalize inputs, compute the canonical input hash
  4. Lookup: idempotency key → Redis run cache → (user, year, hash) in the database
     Hit → stored run, cached=True; a request key the run does not carry yet is
     bound to it, so a later retry with that key finds the same run
  5. Miss → run the pipeline, insert-if-absent, cache
  6. Store failure after a successful computation → the result is still
     returned, persisted=False with a warning. The caller never loses a figure
     because the database was slow.
"""
import logging
from typing import List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taxcompute import cache, store
from taxcompute.errors import StoreError
from taxcompute.evaluator.rules import get_rule_set
from taxcompute.evaluator.schemas import ComputationResponse
from taxcompute.evaluator.tax_engine import (
    compare_regimes,
    compute_for_regime,
    compute_input_hash,
    prepare_inputs,
)
from taxcompute.intake.schemas import ComputationRequest, Regime
from taxcompute.intake.validator import validate_business_rules

logger = logging.getLogger(__name__)


async def _lookup_cache(
    redis: Optional[aioredis.Redis], request: ComputationRequest, input_hash: str
) -> Optional[ComputationResponse]:
    if redis is None:
        return None
    try:
        return await cache.get_cached_run(redis, request.user_id, request.assessment_year, input_hash)
    except (RedisError, ValueError) as exc:
        logger.warning("Run cache read failed user_id=%s: %s", request.user_id, exc.__class__.__name__)
        return None


async def _fill_cache(redis: Optional[aioredis.Redis], response: ComputationResponse) -> None:
    if redis is None:
        return
    try:
        await cache.set_cached_run(redis, response)
    except RedisError as exc:
        logger.warning("Run cache write failed run_id=%s: %s", response.run_id, exc.__class__.__name__)


async def _rollback_quietly(db: AsyncSession) -> None:
    try:
        await db.rollback()
    except SQLAlchemyError:
        logger.exception("Rollback after store failure also failed")


async def _remember_key(
    db: AsyncSession,
    request: ComputationRequest,
    run: ComputationResponse,
) -> ComputationResponse:
    """Bind the request's idempotency key to a stored run that answered it."""
    key = request.idempotency_key
    if key is None or run.run_id is None or run.idempotency_key == key:
        return run
    try:
        return await store.bind_run_key(db, run, key)
    except StoreError as exc:
        logger.warning("Idempotency key not bound run_id=%s: %s", run.run_id, exc.code)
        await _rollback_quietly(db)
        return run


async def compute_or_fetch(
    db: AsyncSession,
    request: ComputationRequest,
    redis: Optional[aioredis.Redis] = None,
) -> ComputationResponse:
    """
    Return the computation for request, reusing a stored run when one exists.

    Raises:
        UnsupportedAssessmentYearError / RuleSetNotFoundError: before anything else.
        InputValidationError: business-rule violations.
    Store problems do NOT raise once the result is computed.
    """
    # Step 1: Fail fast on configuration
    get_rule_set(request.assessment_year, request.regime)
    if request.compare_regimes:
        for regime in Regime:
            get_rule_set(request.assessment_year, regime)

    # Step 2: Business rules
    validate_business_rules(request)

    # Step 3: Canonical hash
    inputs = prepare_inputs(request)
    input_hash = compute_input_hash(request, inputs)
    warnings: List[str] = []

    # Step 4: Lookups
    try:
        if request.idempotency_key is not None:
            existing = await store.find_run_by_key(
                db, request.user_id, request.assessment_year, request.idempotency_key,
            )
            if existing is not None:
                logger.info("Idempotency key hit run_id=%s", existing.run_id)
                return existing

        cached = await _lookup_cache(redis, request, input_hash)
        if cached is not None:
            return await _remember_key(db, request, cached)

        existing = await store.find_run_by_hash(db, request.user_id, request.assessment_year, input_hash)
        if existing is not None:
            logger.info("Input hash hit run_id=%s hash=%s", existing.run_id, input_hash[:12])
            await _fill_cache(redis, existing)
            return await _remember_key(db, request, existing)
    except StoreError as exc:
        # Lookup failed: compute anyway, persisting will likely fail too
        logger.warning("Run lookup failed user_id=%s: %s", request.user_id, exc.code)
        warnings.append(f"Stored runs could not be checked ({exc.code})")
        await _rollback_quietly(db)

    # Step 5: Compute
    comparison = compare_regimes(inputs) if request.compare_regimes else None
    if comparison is not None:
        result = comparison.old_regime if request.regime == Regime.old else comparison.new_regime
    else:
        result = compute_for_regime(inputs, request.regime)
    logger.info(
        "Computed run user_id=%s ay=%s regime=%s compare=%s hash=%s",
        request.user_id, request.assessment_year, request.regime.value,
        request.compare_regimes, input_hash[:12],
    )

    response = ComputationResponse(
        run_id=None,
        user_id=request.user_id,
        assessment_year=request.assessment_year,
        input_hash=input_hash,
        idempotency_key=request.idempotency_key,
        cached=False,
        persisted=False,
        warnings=warnings,
        result=result,
        comparison=comparison,
    )

    # Step 6: Persist
    try:
        stored = await store.insert_run_if_absent(db, response)
    except StoreError as exc:
        logger.warning("Run not persisted user_id=%s hash=%s: %s", request.user_id, input_hash[:12], exc.code)
        await _rollback_quietly(db)
        return response.model_copy(update={
            "warnings": warnings + [f"Result was computed but not saved ({exc.code}); retry to persist it"],
        })

    await _fill_cache(redis, stored)
    if stored.cached:
        stored = await _remember_key(db, request, stored)
    if warnings:
        stored = stored.model_copy(update={"warnings": warnings})
    return stored
