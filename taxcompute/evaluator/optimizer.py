"""
optimizer.py — Plain-English suggestions for unused deduction headroom.
Pure functions. No I/O.

Headroom is read from the active rule set's caps, so the same code serves every
assessment year and both regimes: the new regime only carries 80CCD(2), hence
only ever gets an employer-NPS suggestion.
"""
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from taxcompute.evaluator.rules import TaxRuleSet
from taxcompute.evaluator.schemas import ZERO, ComputationResult, IncomeProfile
from taxcompute.evaluator.slabs import marginal_rate
from taxcompute.intake.schemas import Regime, Section

SUGGESTION_MIN_SAVING = Decimal(1000)   # Suppress suggestions where tax saving < ₹1,000
MAX_SUGGESTIONS = 3

# Sections worth acting on. {headroom}, {saving} and {regime} are filled in.
_SUGGESTIONS: Dict[Section, str] = {
    Section.section_80c: (
        "Invest ₹{headroom:,.0f} more in 80C instruments (PPF, ELSS, LIC) "
        "to save ₹{saving:,.0f} in the {regime} Regime."
    ),
    Section.section_80d_self: (
        "Pay ₹{headroom:,.0f} more in health insurance (self/family) under Section 80D "
        "to save ₹{saving:,.0f} in the {regime} Regime."
    ),
    Section.section_80d_parents: (
        "Pay ₹{headroom:,.0f} more in parent health insurance under Section 80D "
        "to save ₹{saving:,.0f} in the {regime} Regime."
    ),
    Section.section_80ccd1b: (
        "Contribute ₹{headroom:,.0f} more to NPS (Section 80CCD(1B)) "
        "to save ₹{saving:,.0f} in the {regime} Regime."
    ),
    Section.section_24b: (
        "Home loan interest paid up to ₹{headroom:,.0f} more can be claimed under "
        "Section 24(b) to save ₹{saving:,.0f} in the {regime} Regime."
    ),
    Section.section_80ccd2: (
        "Ask your employer to contribute ₹{headroom:,.0f} more to NPS (Section 80CCD(2)) "
        "to save ₹{saving:,.0f} in the {regime} Regime."
    ),
}


def effective_marginal_rate(result: ComputationResult, rule_set: TaxRuleSet) -> Decimal:
    """Slab rate of the last taxed rupee × (1 + cess). 0 when no tax is payable."""
    if result.total_tax_liability <= 0:
        return ZERO
    rate = marginal_rate(result.taxable_income, rule_set.slabs_for(result.age_group))
    return rate * (1 + rule_set.cess_rate)


def generate_suggestions(
    result: ComputationResult,
    rule_set: TaxRuleSet,
    income: IncomeProfile,
    parents_senior_citizen: bool = False,
) -> List[str]:
    """
    Suggestions for sections with unused cap headroom in this regime.
    Suppresses suggestions saving < ₹1,000. At most 3, sorted by saving descending.
    """
    rate = effective_marginal_rate(result, rule_set)
    if rate == 0:
        return []

    used: Dict[Section, Decimal] = {line.section: line.allowed for line in result.deductions}
    senior_flags = {
        Section.section_80d_self: result.age_group.is_senior,
        Section.section_80d_parents: parents_senior_citizen,
    }
    regime_label = "Old" if rule_set.regime == Regime.old else "New"

    candidates: List[Tuple[Decimal, str]] = []
    for section, template in _SUGGESTIONS.items():
        cap_rule = rule_set.deduction_caps.get(section)
        if cap_rule is None:
            continue
        cap: Optional[Decimal] = cap_rule.resolve(
            senior_flags.get(section, False), income.salary, income.total_income,
        )
        if cap is None:
            continue
        headroom = cap - used.get(section, ZERO)
        # Headroom beyond taxable income saves nothing
        headroom = min(headroom, result.taxable_income)
        saving = headroom * rate
        if headroom > 0 and saving >= SUGGESTION_MIN_SAVING:
            candidates.append((
                saving,
                template.format(headroom=headroom, saving=round(saving), regime=regime_label),
            ))

    candidates.sort(key=lambda c: c[0], reverse=True)
    return [text for _, text in candidates[:MAX_SUGGESTIONS]]
