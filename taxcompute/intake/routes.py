"""
Intake HTTP routes — POST /api/deductions/80c,
                     POST /api/deductions/80d,
                     POST /api/deductions/other,
                     POST /api/deductions/taxes-paid,
                     POST /api/deductions/carry-forward,
                     POST /api/capital-gains

Deduction records are idempotent on (user, assessment year, section, idempotency key).
The capital gains endpoint is a pure calculator: nothing is persisted.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from taxcompute.database import get_db
from taxcompute.evaluator.records import (
    record_80c,
    record_80d,
    record_carry_forward,
    record_other,
    record_taxes_paid,
)
from taxcompute.intake.capital_gains import summarize_capital_gains, to_income_input
from taxcompute.intake.schemas import (
    CapitalGainsRequest,
    CarryForwardRequest,
    OtherDeductionsRequest,
    Section80CRequest,
    Section80DRequest,
    TaxesPaidRecordRequest,
)

router = APIRouter(prefix="/api", tags=["intake"])
logger = logging.getLogger(__name__)


def _record_response(record) -> JSONResponse:
    # 201 for a new record, 200 when an earlier submission is returned
    status_code = 200 if record.cached else 201
    return JSONResponse(status_code=status_code, content=record.model_dump(mode="json"))


@router.post("/deductions/80c")
async def submit_80c(body: Section80CRequest, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """Itemised 80C investments (PPF, ELSS, principal repayment, …) capped at ₹1,50,000."""
    return _record_response(await record_80c(db, body))


@router.post("/deductions/80d")
async def submit_80d(body: Section80DRequest, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """Health insurance premiums; separate caps for self/family and parents."""
    return _record_response(await record_80d(db, body))


@router.post("/deductions/other")
async def submit_other(body: OtherDeductionsRequest, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """80TTA/80TTB, 80CCD(1B), 80E, 80G, 24(b) and other sections."""
    return _record_response(await record_other(db, body))


@router.post("/deductions/taxes-paid")
async def submit_taxes_paid(body: TaxesPaidRecordRequest, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """TDS and TCS credits from Form 26AS, totalled per kind."""
    return _record_response(await record_taxes_paid(db, body))


@router.post("/deductions/carry-forward")
async def submit_carry_forward(body: CarryForwardRequest, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """
    Losses brought forward from earlier years. Each loss type reports what is
    still available for set-off and what has lapsed.
    """
    return _record_response(await record_carry_forward(db, body))


@router.post("/capital-gains")
async def capital_gains(body: CapitalGainsRequest) -> JSONResponse:
    """
    Per-transaction gains plus totals. `income_input` can be pasted into
    ComputationRequest.incomes.capital_gains.
    """
    summary = summarize_capital_gains(body.transactions)
    content = summary.model_dump(mode="json")
    content["income_input"] = to_income_input(summary).model_dump(mode="json")
    logger.info("POST /api/capital-gains transactions=%d", len(summary.transactions))
    return JSONResponse(status_code=200, content=content)
