"""
deductions.py — Deduction capper.

Turns claimed amounts into allowed amounts using the active rule set:
  - flat ceilings, with a higher ceiling when the claim is flagged senior (80D)
  - income-percentage ceilings (80CCD(2) on salary, 80G on total income)
  - uncapped sections (80E, other) pass through in full
  - a section the regime does not list is disallowed: allowed = 0, eligible = False

The same capper serves the computation pipeline and the deduction record store.
"""
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from taxcompute.evaluator.rules import TaxRuleSet
from taxcompute.evaluator.schemas import (
    ZERO,
    DeductionClaim,
    DeductionLine,
    DeductionSummary,
    IncomeProfile,
)
from taxcompute.intake.schemas import AgeGroup, Section


# ---------------------------------------------------------------------------
# Request fields → claims
# ---------------------------------------------------------------------------

def claims_from_amounts(
    amounts: Dict[str, Decimal],
    age_group: AgeGroup,
    parents_senior_citizen: bool = False,
) -> List[DeductionClaim]:
    """
    Map normalized DeductionInput amounts onto sections. Zero claims are dropped.

    section_80tta is savings interest: 80TTA below 60, 80TTB for senior age groups.
    """
    senior = age_group.is_senior
    mapping = [
        ("section_80c", Section.section_80c, False),
        ("section_80d", Section.section_80d_self, senior),
        ("section_80d_parents", Section.section_80d_parents, parents_senior_citizen),
        ("preventive_health_checkup", Section.section_80d_preventive, False),
        ("section_80tta", Section.section_80ttb if senior else Section.section_80tta, senior),
        ("section_80ccd", Section.section_80ccd1b, False),
        ("section_80ccd2", Section.section_80ccd2, False),
        ("section_80e", Section.section_80e, False),
        ("section_80g", Section.section_80g, False),
        ("section_24b", Section.section_24b, False),
        ("other", Section.other, False),
    ]
    claims = []
    for field, section, flag in mapping:
        amount = amounts.get(field, ZERO)
        if amount > 0:
            claims.append(DeductionClaim(section=section, claimed=amount, senior=flag))
    return claims


def merge_claims(claims: Iterable[DeductionClaim]) -> List[DeductionClaim]:
    """Sum claims per section (first-seen order). Senior if any merged claim is senior."""
    merged: Dict[Section, DeductionClaim] = {}
    for claim in claims:
        existing = merged.get(claim.section)
        if existing is None:
            merged[claim.section] = claim
            continue
        merged[claim.section] = DeductionClaim(
            section=claim.section,
            claimed=existing.claimed + claim.claimed,
            senior=existing.senior or claim.senior,
            components=existing.components + claim.components,
        )
    return list(merged.values())


# ---------------------------------------------------------------------------
# Capping
# ---------------------------------------------------------------------------

def cap_claim(
    claim: DeductionClaim,
    rule_set: TaxRuleSet,
    salary: Decimal = ZERO,
    total_income: Decimal = ZERO,
) -> DeductionLine:
    """Apply the rule set's cap for claim.section. allowed <= min(claimed, cap)."""
    cap_rule = rule_set.deduction_caps.get(claim.section)
    if cap_rule is None:
        return DeductionLine(
            section=claim.section,
            claimed=claim.claimed,
            cap=None,
            allowed=ZERO,
            cap_applied=False,
            eligible=False,
        )

    cap: Optional[Decimal] = cap_rule.resolve(claim.senior, salary, total_income)
    if cap is None:
        allowed = claim.claimed
    else:
        cap = max(ZERO, cap)
        allowed = min(claim.claimed, cap)
    return DeductionLine(
        section=claim.section,
        claimed=claim.claimed,
        cap=cap,
        allowed=allowed,
        cap_applied=cap is not None and claim.claimed > cap,
        eligible=True,
    )


def apply_caps(
    claims: Iterable[DeductionClaim],
    rule_set: TaxRuleSet,
    income: IncomeProfile,
) -> DeductionSummary:
    """
    Cap every claim and add the standard deduction.

    total_deductions = standard_deduction + Σ allowed. The standard deduction is
    limited to salary income, so a taxpayer with no salary gets none.
    """
    tags: List[str] = []

    standard_deduction = min(rule_set.standard_deduction, income.salary)
    if standard_deduction > 0:
        tags.append(f"standard-deduction-{int(rule_set.standard_deduction)}")

    lines = [
        cap_claim(claim, rule_set, salary=income.salary, total_income=income.total_income)
        for claim in merge_claims(claims)
    ]
    for line in lines:
        if not line.eligible:
            tags.append(f"deduction-not-allowed:{line.section.value}")
        elif line.cap_applied:
            tags.append(f"deduction-capped:{line.section.value}")

    chapter_total = sum((line.allowed for line in lines), ZERO)
    if chapter_total > 0:
        tags.append(f"{rule_set.regime.value}-regime-deductions")

    return DeductionSummary(
        standard_deduction=standard_deduction,
        lines=tuple(lines),
        chapter_total=chapter_total,
        total_deductions=standard_deduction + chapter_total,
        applied_rule_tags=tuple(tags),
    )
