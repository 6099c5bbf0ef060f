"""
levies.py — 87A rebate, surcharge with marginal relief, health & education cess.

Order matters:
  slab_tax → rebate → tax_after_rebate → surcharge → cess on (tax_after_rebate + surcharge)

Rebate (87A):
  taxable_income <= rebate.max_income → rebate = min(slab_tax, max_rebate)
  above the ceiling                   → no rebate at all

Surcharge:
  Highest band whose threshold is exceeded, applied to tax_after_rebate.
  Marginal relief caps it so that crossing a threshold by ₹X never raises
  tax + surcharge by more than ₹X.
"""
from decimal import Decimal
from typing import NamedTuple, Optional, Sequence, Tuple

from taxcompute.evaluator.rules import RebateConfig, SurchargeBand, TaxRuleSet
from taxcompute.evaluator.schemas import ZERO
from taxcompute.evaluator.slabs import calculate_slab_tax
from taxcompute.intake.schemas import AgeGroup


class SurchargeOutcome(NamedTuple):
    surcharge: Decimal
    marginal_relief: Decimal
    band: Optional[SurchargeBand]


# ===========================================================================
# 87A REBATE
# ===========================================================================

def apply_rebate(taxable_income: Decimal, slab_tax: Decimal, rebate: RebateConfig) -> Tuple[Decimal, Decimal]:
    """Returns (rebate, tax_after_rebate). tax_after_rebate is never negative."""
    if taxable_income <= rebate.max_income:
        amount = min(slab_tax, rebate.max_rebate)
    else:
        amount = ZERO
    return amount, max(ZERO, slab_tax - amount)


# ===========================================================================
# SURCHARGE
# ===========================================================================

def surcharge_band(taxable_income: Decimal, bands: Sequence[SurchargeBand]) -> Optional[SurchargeBand]:
    """Highest band whose threshold taxable_income exceeds (strictly)."""
    selected = None
    for band in bands:
        if taxable_income > band.threshold:
            selected = band
    return selected


def _tax_after_rebate(taxable_income: Decimal, rule_set: TaxRuleSet, age_group: AgeGroup) -> Decimal:
    slab_tax, _ = calculate_slab_tax(taxable_income, rule_set.slabs_for(age_group))
    _, tax = apply_rebate(taxable_income, slab_tax, rule_set.rebate)
    return tax


def tax_with_surcharge(taxable_income: Decimal, rule_set: TaxRuleSet, age_group: AgeGroup) -> Decimal:
    """tax_after_rebate + (relief-capped) surcharge at taxable_income. Used for thresholds."""
    tax = _tax_after_rebate(taxable_income, rule_set, age_group)
    outcome = compute_surcharge(taxable_income, tax, rule_set, age_group)
    return tax + outcome.surcharge


def compute_surcharge(
    taxable_income: Decimal,
    tax_after_rebate: Decimal,
    rule_set: TaxRuleSet,
    age_group: AgeGroup,
) -> SurchargeOutcome:
    """
    Surcharge with marginal relief.

    tax_at_threshold is the tax + surcharge at exactly the band threshold, which
    falls under the next lower band, so the recursion terminates at the first band.
    capped = max(0, min(candidate, tax_at_threshold + (income - threshold) - tax_after_rebate))
    """
    band = surcharge_band(taxable_income, rule_set.surcharge_bands)
    if band is None:
        return SurchargeOutcome(ZERO, ZERO, None)

    candidate = tax_after_rebate * band.rate
    tax_at_threshold = tax_with_surcharge(band.threshold, rule_set, age_group)
    ceiling = tax_at_threshold + (taxable_income - band.threshold) - tax_after_rebate
    capped = max(ZERO, min(candidate, ceiling))
    return SurchargeOutcome(capped, candidate - capped, band)


# ===========================================================================
# CESS
# ===========================================================================

def apply_cess(tax_after_rebate: Decimal, surcharge: Decimal, cess_rate: Decimal) -> Decimal:
    """Health & education cess on (tax after rebate + surcharge)."""
    return (tax_after_rebate + surcharge) * cess_rate
