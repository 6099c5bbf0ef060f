"""
Evaluator HTTP routes — POST /api/compute,
                        GET  /api/runs/{run_id},
                        GET  /api/rules/{assessment_year}/{regime}

Configuration and validation errors propagate as domain exceptions; main.py
turns them into the standard error envelope.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from taxcompute.database import get_db
from taxcompute.evaluator.rules import get_rule_set
from taxcompute.evaluator.runs import compute_or_fetch
from taxcompute.intake.schemas import ComputationRequest, Regime, normalize_assessment_year
from taxcompute.store import get_run

router = APIRouter(prefix="/api", tags=["evaluator"])
logger = logging.getLogger(__name__)


@router.post("/compute")
async def compute(
    request: Request,
    body: ComputationRequest,
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """
    Compute tax for one regime (optionally comparing both).

    Returns 200 with the rounded ComputationResult fields plus run metadata.
    A retry with the same idempotency key, or an identical payload, returns the
    stored run with cached=true.
    """
    redis = getattr(request.app.state, "redis", None)
    response = await compute_or_fetch(db, body, redis=redis)
    logger.info(
        "POST /api/compute run_id=%s cached=%s persisted=%s",
        response.run_id, response.cached, response.persisted,
    )
    return JSONResponse(status_code=200, content=response.to_payload())


@router.get("/runs/{run_id}")
async def fetch_run(run_id: str, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """Retrieve a stored computation run by id."""
    response = await get_run(db, run_id)
    if response is None:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    return JSONResponse(status_code=200, content=response.to_payload())


@router.get("/rules/{assessment_year}/{regime}")
async def fetch_rules(assessment_year: str, regime: Regime) -> JSONResponse:
    """The rule set the engine applies for (assessment_year, regime)."""
    rule_set = get_rule_set(normalize_assessment_year(assessment_year), regime)
    return JSONResponse(status_code=200, content=rule_set.model_dump(mode="json"))
