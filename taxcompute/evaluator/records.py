"""
records.py — Itemised records: 80C components, 80D premiums, other sections,
TDS/TCS credits and brought-forward losses.

save_deduction_record() is idempotent on (user, year, section, idempotency key):
a resubmission returns the stored record unchanged (same record_id, totals and
components, cached=True) even if the new payload differs.

Records are capped against the OLD regime rule set of the assessment year.
Chapter VI-A itemisation only matters there; the new regime keeps 80CCD(2) alone.

Taxes-paid and carry-forward records are not capped; they share the same table
and idempotency rules.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from taxcompute import store
from taxcompute.evaluator.deductions import cap_claim, merge_claims
from taxcompute.evaluator.rules import CARRY_FORWARD_YEARS, TaxRuleSet, get_rule_set
from taxcompute.evaluator.schemas import (
    ZERO,
    CarryForwardRecordResponse,
    DeductionClaim,
    DeductionLine,
    DeductionRecordResponse,
    LossOffset,
    RecordResponse,
    TaxesPaidRecordResponse,
)
from taxcompute.intake.normalizer import parse_money
from taxcompute.intake.schemas import (
    CarriedForwardLoss,
    CarryForwardRequest,
    LossType,
    OtherDeductionsRequest,
    Regime,
    Section,
    Section80CRequest,
    Section80DRequest,
    TaxesPaidRecordRequest,
)

logger = logging.getLogger(__name__)

RECORD_80C = "80C"
RECORD_80D = "80D"
RECORD_OTHER = "OTHER"

# 80D breakdown bucket names
_80D_BUCKETS = {
    Section.section_80d_self: "self_family",
    Section.section_80d_parents: "parents",
    Section.section_80d_preventive: "preventive",
}


# ---------------------------------------------------------------------------
# Components → claims, per record type
# ---------------------------------------------------------------------------

def _claims_80c(components: List[Dict[str, Any]]) -> List[Tuple[str, DeductionClaim]]:
    total = sum((Decimal(c["amount"]) for c in components), ZERO)
    return [(RECORD_80C, DeductionClaim(section=Section.section_80c, claimed=total))]


def _claims_80d(components: List[Dict[str, Any]]) -> List[Tuple[str, DeductionClaim]]:
    claims = []
    for component in components:
        amount = Decimal(component["amount"])
        if component["insured"] == "preventive":
            section = Section.section_80d_preventive
        elif component["insured"] == "parents":
            section = Section.section_80d_parents
        else:
            section = Section.section_80d_self
        claims.append(DeductionClaim(
            section=section,
            claimed=amount,
            senior=component.get("age_bracket") == "60_plus",
        ))
    return [(_80D_BUCKETS[c.section], c) for c in merge_claims(claims)]


def _claims_other(components: List[Dict[str, Any]]) -> List[Tuple[str, DeductionClaim]]:
    claims = [
        DeductionClaim(section=Section(c["section"]), claimed=Decimal(c["amount"]))
        for c in components
    ]
    return [(c.section.value, c) for c in merge_claims(claims)]


_CLAIM_BUILDERS = {
    RECORD_80C: _claims_80c,
    RECORD_80D: _claims_80d,
    RECORD_OTHER: _claims_other,
}


def cap_components(
    section: str,
    components: List[Dict[str, Any]],
    rule_set: TaxRuleSet,
    total_income: Decimal = ZERO,
) -> Tuple[Dict[str, DeductionLine], Decimal, Decimal, bool]:
    """Returns (breakdown, total_claimed, total_allowed, cap_applied)."""
    breakdown: Dict[str, DeductionLine] = {}
    for bucket, claim in _CLAIM_BUILDERS[section](components):
        breakdown[bucket] = cap_claim(claim, rule_set, total_income=total_income)
    total_claimed = sum((line.claimed for line in breakdown.values()), ZERO)
    total_allowed = sum((line.allowed for line in breakdown.values()), ZERO)
    cap_applied = any(line.cap_applied for line in breakdown.values())
    return breakdown, total_claimed, total_allowed, cap_applied


# ---------------------------------------------------------------------------
# Idempotent save
# ---------------------------------------------------------------------------

async def _find_record(
    db: AsyncSession,
    user_id: str,
    assessment_year: str,
    section: str,
    idempotency_key: Optional[str],
) -> Optional[RecordResponse]:
    if idempotency_key is None:
        return None
    existing = await store.find_deduction_record(db, user_id, assessment_year, section, idempotency_key)
    if existing is not None:
        logger.info("%s record idempotency hit record_id=%s", section, existing.record_id)
    return existing


async def save_deduction_record(
    db: AsyncSession,
    user_id: str,
    assessment_year: str,
    section: str,
    components: List[Dict[str, Any]],
    idempotency_key: Optional[str] = None,
    total_income: Decimal = ZERO,
) -> DeductionRecordResponse:
    """
    Persist an itemised deduction record.

    components: line items with amounts already normalized to paise strings.
    total_income: base for percentage caps (80G); 0 when unknown.
    """
    rule_set = get_rule_set(assessment_year, Regime.old)

    existing = await _find_record(db, user_id, assessment_year, section, idempotency_key)
    if existing is not None:
        return existing

    breakdown, total_claimed, total_allowed, cap_applied = cap_components(
        section, components, rule_set, total_income=total_income,
    )
    return await store.insert_deduction_record_if_absent(
        db,
        user_id=user_id,
        assessment_year=assessment_year,
        section=section,
        idempotency_key=idempotency_key,
        components=components,
        breakdown={key: line.model_dump(mode="json") for key, line in breakdown.items()},
        total_claimed=total_claimed,
        total_allowed=total_allowed,
        cap_applied=cap_applied,
    )


# ---------------------------------------------------------------------------
# Request adapters
# ---------------------------------------------------------------------------

async def record_80c(db: AsyncSession, request: Section80CRequest) -> DeductionRecordResponse:
    components = [
        {"type": c.type, "amount": str(parse_money(c.amount))}
        for c in request.components
    ]
    return await save_deduction_record(
        db, request.user_id, request.assessment_year, RECORD_80C, components, request.idempotency_key,
    )


async def record_80d(db: AsyncSession, request: Section80DRequest) -> DeductionRecordResponse:
    components = [
        {"insured": p.insured, "age_bracket": p.age_bracket, "amount": str(parse_money(p.amount))}
        for p in request.premiums
    ]
    preventive = parse_money(request.preventive_checkup)
    if preventive > 0:
        components.append({"insured": "preventive", "age_bracket": None, "amount": str(preventive)})
    return await save_deduction_record(
        db, request.user_id, request.assessment_year, RECORD_80D, components, request.idempotency_key,
    )


async def record_other(db: AsyncSession, request: OtherDeductionsRequest) -> DeductionRecordResponse:
    components = [
        {"section": e.section, "amount": str(parse_money(e.amount)), "meta": e.meta}
        for e in request.entries
    ]
    return await save_deduction_record(
        db,
        request.user_id,
        request.assessment_year,
        RECORD_OTHER,
        components,
        request.idempotency_key,
        total_income=parse_money(request.total_income),
    )


# ---------------------------------------------------------------------------
# Taxes paid and brought-forward losses (not capped)
# ---------------------------------------------------------------------------

async def record_taxes_paid(db: AsyncSession, request: TaxesPaidRecordRequest) -> TaxesPaidRecordResponse:
    """TDS / TCS credits with per-kind totals. Amounts are parsed tolerantly."""
    get_rule_set(request.assessment_year, Regime.old)
    existing = await _find_record(
        db, request.user_id, request.assessment_year, store.RECORD_TAXES_PAID, request.idempotency_key,
    )
    if existing is not None:
        return existing

    components: List[Dict[str, Any]] = []
    breakdown: Dict[str, Dict[str, Any]] = {}
    for kind, entries in (("tds", request.tds_entries), ("tcs", request.tcs_entries)):
        total = ZERO
        for entry in entries:
            amount = parse_money(entry.amount)
            total += amount
            components.append({
                "kind": kind,
                "source": entry.source,
                "amount": str(amount),
                "form26as_reference": entry.form26as_reference,
            })
        breakdown[kind] = {"entries": len(entries), "total": str(total)}

    grand_total = sum((Decimal(summary["total"]) for summary in breakdown.values()), ZERO)
    return await store.insert_deduction_record_if_absent(
        db,
        user_id=request.user_id,
        assessment_year=request.assessment_year,
        section=store.RECORD_TAXES_PAID,
        idempotency_key=request.idempotency_key,
        components=components,
        breakdown=breakdown,
        total_claimed=grand_total,
        total_allowed=grand_total,
        cap_applied=False,
    )


def carry_forward_offsets(
    losses: List[CarriedForwardLoss],
    assessment_year: str,
    carry_forward_years: Optional[int] = None,
) -> Tuple[Dict[LossType, LossOffset], List[Dict[str, Any]]]:
    """
    Split brought-forward losses into available and lapsed, per loss type.

    A loss stays available for the window of assessment years following the
    year it arose in (CARRY_FORWARD_YEARS, or carry_forward_years for every
    type), and only when can_be_set_off.
    Returns (offsets, components) where components echo each loss with its
    normalized amount, age and eligibility.
    """
    current_start = int(assessment_year[:4])
    totals = {loss_type: [ZERO, ZERO] for loss_type in LossType}    # [carried, available]
    components = []
    for loss in losses:
        amount = parse_money(loss.amount)
        years_elapsed = current_start - int(loss.year_of_loss[:4])
        window = carry_forward_years or CARRY_FORWARD_YEARS[loss.loss_type]
        eligible = loss.can_be_set_off and 0 < years_elapsed <= window
        totals[loss.loss_type][0] += amount
        if eligible:
            totals[loss.loss_type][1] += amount
        components.append({
            "loss_type": loss.loss_type.value,
            "year_of_loss": loss.year_of_loss,
            "amount": str(amount),
            "can_be_set_off": loss.can_be_set_off,
            "years_elapsed": years_elapsed,
            "eligible": eligible,
        })
    offsets = {
        loss_type: LossOffset(
            loss_type=loss_type,
            carried_forward=carried,
            available=available,
            lapsed=carried - available,
        )
        for loss_type, (carried, available) in totals.items()
    }
    return offsets, components


async def record_carry_forward(db: AsyncSession, request: CarryForwardRequest) -> CarryForwardRecordResponse:
    get_rule_set(request.assessment_year, Regime.old)
    existing = await _find_record(
        db, request.user_id, request.assessment_year, store.RECORD_CARRY_FORWARD, request.idempotency_key,
    )
    if existing is not None:
        return existing

    offsets, components = carry_forward_offsets(
        request.losses, request.assessment_year, request.carry_forward_years,
    )
    return await store.insert_deduction_record_if_absent(
        db,
        user_id=request.user_id,
        assessment_year=request.assessment_year,
        section=store.RECORD_CARRY_FORWARD,
        idempotency_key=request.idempotency_key,
        components=components,
        breakdown={loss_type.value: offset.model_dump(mode="json") for loss_type, offset in offsets.items()},
        total_claimed=sum((o.carried_forward for o in offsets.values()), ZERO),
        total_allowed=sum((o.available for o in offsets.values()), ZERO),
        cap_applied=any(o.lapsed > 0 for o in offsets.values()),
    )
