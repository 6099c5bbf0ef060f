"""
tax_engine.py — The computation pipeline and the regime comparator.
Pure Python, deterministic. Same input → same output.

ONE pipeline, parameterised by a TaxRuleSet:

    IncomeProfile ─┐
    claims ────────┼─► deductions ─► slab tax ─► 87A rebate ─► surcharge ─► cess ─► ComputationResult
    taxes paid ────┘

There are no per-year or per-regime branches below — every difference between
AY 2024-25 and AY 2026-27, old and new, lives in rules.py.

Arithmetic runs on exact Decimals up to the slab tax, rebate and surcharge.
Those are rounded (half-up, whole rupees) once, cess is levied on the rounded
sum, and the reported figures add up exactly.
"""
import hashlib
import json
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import List, NamedTuple, Optional, Sequence, Tuple

from taxcompute.evaluator.deductions import apply_caps, claims_from_amounts
from taxcompute.evaluator.levies import apply_cess, apply_rebate, compute_surcharge
from taxcompute.evaluator.optimizer import generate_suggestions
from taxcompute.evaluator.rules import TaxRuleSet, get_rule_set
from taxcompute.evaluator.schemas import (
    ZERO,
    ComputationResult,
    DeductionClaim,
    IncomeProfile,
    RegimeComparison,
    SlabBreakdownRow,
    TaxesPaid,
)
from taxcompute.evaluator.slabs import calculate_slab_tax
from taxcompute.intake.normalizer import normalize_deductions, normalize_incomes, normalize_taxes_paid
from taxcompute.intake.schemas import AgeGroup, ComputationRequest, Regime, Section

logger = logging.getLogger(__name__)

RUPEE = Decimal("1")

_OLD_REGIME_SLAB_TAGS = {
    AgeGroup.general: "general-slabs",
    AgeGroup.senior: "senior-citizen-slabs",
    AgeGroup.super_senior: "super-senior-citizen-slabs",
}

_SECTION_LABELS = {
    Section.section_80c: "80C",
    Section.section_80d_self: "80D (self/family)",
    Section.section_80d_parents: "80D (parents)",
    Section.section_80ccd1b: "80CCD(1B)",
    Section.section_80ccd2: "80CCD(2)",
    Section.section_80e: "80E",
    Section.section_80g: "80G",
    Section.section_24b: "Section 24(b)",
}


def to_rupees(amount: Decimal) -> Decimal:
    """Round half-up to whole rupees. Only reported figures go through here."""
    return amount.quantize(RUPEE, rounding=ROUND_HALF_UP)


# ===========================================================================
# NORMALIZED INPUTS
# ===========================================================================

class PipelineInputs(NamedTuple):
    """Everything the pipeline needs apart from the rule set."""
    assessment_year: str
    age_group: AgeGroup
    income: IncomeProfile
    claims: Tuple[DeductionClaim, ...]
    taxes_paid: TaxesPaid
    parents_senior_citizen: bool
    adjustments: Tuple[str, ...]        # tolerant-parsing tags beyond income.adjustments


def prepare_inputs(request: ComputationRequest) -> PipelineInputs:
    """Normalize every money field of the request. Never raises on bad amounts."""
    income = normalize_incomes(request.incomes)
    deduction_amounts, deduction_tags = normalize_deductions(request.deductions)
    taxes_paid, tax_paid_tags = normalize_taxes_paid(request.taxes_paid)
    claims = claims_from_amounts(
        deduction_amounts,
        request.age_group,
        parents_senior_citizen=request.deductions.parents_senior_citizen,
    )
    return PipelineInputs(
        assessment_year=request.assessment_year,
        age_group=request.age_group,
        income=income,
        claims=tuple(claims),
        taxes_paid=taxes_paid,
        parents_senior_citizen=request.deductions.parents_senior_citizen,
        adjustments=tuple(deduction_tags) + tuple(tax_paid_tags),
    )


# ===========================================================================
# THE PIPELINE
# ===========================================================================

def compute_tax(
    income: IncomeProfile,
    claims: Sequence[DeductionClaim],
    taxes_paid: TaxesPaid,
    rule_set: TaxRuleSet,
    age_group: AgeGroup = AgeGroup.general,
    adjustments: Sequence[str] = (),
) -> ComputationResult:
    """
    Run the full computation for one regime.

    Step order:
      1. total_income = gross - exempt
      2. deductions (standard + capped, regime-eligible sections)
      3. taxable_income = max(0, total_income - total_deductions)
      4. slab tax
      5. 87A rebate
      6. surcharge with marginal relief
      7. cess on (tax_after_rebate + surcharge)
      8. refund_or_due = total_tax_paid - total_tax_liability
    """
    tags: List[str] = list(income.adjustments) + list(adjustments)

    # Step 1: Income
    gross_income = income.gross_income
    total_income = income.total_income

    # Step 2: Deductions
    summary = apply_caps(claims, rule_set, income)
    tags.extend(summary.applied_rule_tags)

    # Step 3: Taxable income (never negative)
    taxable_income = total_income - summary.total_deductions
    if taxable_income < 0:
        taxable_income = ZERO
        tags.append("taxable-income-clamped")

    # Step 4: Slab tax
    slab_tax, breakdown = calculate_slab_tax(taxable_income, rule_set.slabs_for(age_group))
    if rule_set.regime == Regime.old:
        tags.append(_OLD_REGIME_SLAB_TAGS[age_group])
    else:
        tags.append("new-regime-slabs")

    # Step 5: 87A rebate
    rebate, tax_after_rebate = apply_rebate(taxable_income, slab_tax, rule_set.rebate)
    if rebate > 0:
        tags.append("rebate-87A")

    # Step 6: Surcharge
    outcome = compute_surcharge(taxable_income, tax_after_rebate, rule_set, age_group)
    if outcome.surcharge > 0:
        tags.append("surcharge-applied")
    if outcome.marginal_relief > 0:
        tags.append("marginal-relief")

    # Reported figures chain exactly: tax_after_rebate + surcharge + cess == total
    reported_slab_tax = to_rupees(slab_tax)
    reported_after_rebate = to_rupees(tax_after_rebate)
    reported_surcharge = to_rupees(outcome.surcharge)
    tax_after_surcharge = reported_after_rebate + reported_surcharge

    # Step 7: Cess
    cess = to_rupees(apply_cess(reported_after_rebate, reported_surcharge, rule_set.cess_rate))
    if cess > 0:
        tags.append(f"health-education-cess-{(rule_set.cess_rate * 100).normalize():f}%")
    total_tax_liability = tax_after_surcharge + cess

    # Step 8: Refund / due
    total_paid = to_rupees(taxes_paid.total)
    refund_or_due = total_paid - total_tax_liability

    return ComputationResult(
        assessment_year=rule_set.assessment_year,
        regime=rule_set.regime,
        age_group=age_group,
        gross_income=to_rupees(gross_income),
        exempt_income=to_rupees(income.exempt),
        total_income=to_rupees(total_income),
        standard_deduction=to_rupees(summary.standard_deduction),
        total_deductions=to_rupees(summary.total_deductions),
        taxable_income=to_rupees(taxable_income),
        slab_tax=reported_slab_tax,
        rebate=reported_slab_tax - reported_after_rebate,
        tax_after_rebate=reported_after_rebate,
        surcharge=reported_surcharge,
        marginal_relief=to_rupees(outcome.marginal_relief),
        tax_after_surcharge=tax_after_surcharge,
        cess=cess,
        total_tax_liability=total_tax_liability,
        total_tax_paid=total_paid,
        refund_or_due=refund_or_due,
        slab_breakdown=tuple(
            SlabBreakdownRow(
                lower=row.lower,
                upper=row.upper,
                rate=row.rate,
                taxable_amount=to_rupees(row.taxable_amount),
                tax=to_rupees(row.tax),
            )
            for row in breakdown
        ),
        deductions=summary.lines,
        applied_rule_tags=tuple(tags),
    )


def compute_for_regime(inputs: PipelineInputs, regime: Regime) -> ComputationResult:
    """Resolve the rule set (fails fast on unsupported years) and run the pipeline."""
    rule_set = get_rule_set(inputs.assessment_year, regime)
    return compute_tax(
        inputs.income,
        inputs.claims,
        inputs.taxes_paid,
        rule_set,
        age_group=inputs.age_group,
        adjustments=inputs.adjustments,
    )


# ===========================================================================
# COMPARE REGIMES — public API
# ===========================================================================

def _rationale(old: ComputationResult, new: ComputationResult, recommended: Regime, savings: Decimal) -> str:
    if savings == 0:
        return (
            f"Both regimes result in the same tax (₹{old.total_tax_liability:,.0f}). "
            "New Regime recommended as the simpler option with no mandatory investment requirements."
        )
    if recommended == Regime.old:
        key_deds = [
            f"{_SECTION_LABELS[line.section]} ₹{line.allowed:,.0f}"
            for line in sorted(old.deductions, key=lambda l: l.allowed, reverse=True)
            if line.allowed > 0 and line.section in _SECTION_LABELS
        ]
        top_deds = ", ".join(key_deds[:3]) if key_deds else "available deductions"
        return (
            f"Old Regime saves ₹{savings:,.0f} over the New Regime. "
            f"Old Regime tax: ₹{old.total_tax_liability:,.0f} vs New Regime tax: ₹{new.total_tax_liability:,.0f}. "
            f"Key deductions: {top_deds}."
        )
    return (
        f"New Regime saves ₹{savings:,.0f} over the Old Regime. "
        f"New Regime tax: ₹{new.total_tax_liability:,.0f} vs Old Regime tax: ₹{old.total_tax_liability:,.0f}. "
        f"Your total eligible Old Regime deductions (₹{old.total_deductions:,.0f}) "
        f"are insufficient to overcome the lower New Regime slab rates."
    )


def compare_regimes(inputs: PipelineInputs) -> RegimeComparison:
    """
    Run the pipeline once per regime on the same inputs and recommend the lower
    total_tax_liability. Ties go to the New Regime.

    The new regime ignores old-only deductions because its rule set carries no
    caps for them — there is no regime-specific code path here.
    """
    old_rules = get_rule_set(inputs.assessment_year, Regime.old)
    new_rules = get_rule_set(inputs.assessment_year, Regime.new)

    old = compute_tax(
        inputs.income, inputs.claims, inputs.taxes_paid, old_rules,
        age_group=inputs.age_group, adjustments=inputs.adjustments,
    )
    new = compute_tax(
        inputs.income, inputs.claims, inputs.taxes_paid, new_rules,
        age_group=inputs.age_group, adjustments=inputs.adjustments,
    )

    if old.total_tax_liability < new.total_tax_liability:
        recommended = Regime.old
    else:
        # Tie → New Regime
        recommended = Regime.new
    savings = abs(old.total_tax_liability - new.total_tax_liability)

    return RegimeComparison(
        old_regime=old,
        new_regime=new,
        recommended=recommended,
        savings=savings,
        rationale=_rationale(old, new, recommended, savings),
        old_regime_suggestions=tuple(
            generate_suggestions(old, old_rules, inputs.income, inputs.parents_senior_citizen)
        ),
        new_regime_suggestions=tuple(
            generate_suggestions(new, new_rules, inputs.income, inputs.parents_senior_citizen)
        ),
    )


# ===========================================================================
# CANONICAL INPUT HASH
# ===========================================================================

def canonical_payload(request: ComputationRequest, inputs: Optional[PipelineInputs] = None) -> dict:
    """
    The request as the engine sees it: normalized amounts (paise strings), enum
    values, no idempotency key. Two requests that normalize identically hash
    identically, e.g. salary 1200000 and salary "₹12,00,000".
    """
    if inputs is None:
        inputs = prepare_inputs(request)
    income = inputs.income
    deduction_amounts, _ = normalize_deductions(request.deductions)
    return {
        "user_id": request.user_id,
        "assessment_year": request.assessment_year,
        "regime": request.regime.value,
        "age_group": request.age_group.value,
        "compare_regimes": request.compare_regimes,
        "incomes": {
            "salary": str(income.salary),
            "interest": str(income.interest),
            "short_term_capital_gain": str(income.short_term_capital_gain),
            "long_term_capital_gain": str(income.long_term_capital_gain),
            "property": str(income.house_property),
            "virtual_digital_asset": str(income.virtual_digital_asset),
            "other": str(income.other),
            "exempt": str(income.exempt),
        },
        "deductions": {
            **{name: str(amount) for name, amount in deduction_amounts.items()},
            "parents_senior_citizen": inputs.parents_senior_citizen,
        },
        "taxes_paid": {
            name: str(amount) for name, amount in inputs.taxes_paid.model_dump().items()
        },
    }


def compute_input_hash(request: ComputationRequest, inputs: Optional[PipelineInputs] = None) -> str:
    """SHA-256 of the canonical JSON (sorted keys, compact separators)."""
    canonical = json.dumps(
        canonical_payload(request, inputs),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
