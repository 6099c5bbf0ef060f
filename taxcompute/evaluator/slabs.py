"""
slabs.py — Progressive slab tax calculator.

Pure function over Decimal. The result is continuous, piecewise-linear and
non-decreasing in taxable income: each rupee is taxed once, at the rate of the
slab it falls in.
"""
from decimal import Decimal
from typing import List, Sequence, Tuple

from taxcompute.evaluator.rules import Slab
from taxcompute.evaluator.schemas import ZERO, SlabBreakdownRow


def calculate_slab_tax(
    taxable_income: Decimal,
    slabs: Sequence[Slab],
) -> Tuple[Decimal, List[SlabBreakdownRow]]:
    """
    Apply progressive slab tax using the bracket-list pattern.

    Walks slabs ascending, taxes min(remaining, slab width) in each, stops once
    nothing remains. Returns (exact tax, one breakdown row per slab that
    received income — including 0% slabs).
    """
    tax = ZERO
    rows: List[SlabBreakdownRow] = []
    remaining = max(ZERO, taxable_income)

    for slab in slabs:
        if remaining <= 0:
            break
        width = None if slab.upper is None else slab.upper - slab.lower
        in_slab = remaining if width is None else min(remaining, width)
        slab_tax = in_slab * slab.rate
        tax += slab_tax
        remaining -= in_slab
        rows.append(
            SlabBreakdownRow(
                lower=slab.lower,
                upper=slab.upper,
                rate=slab.rate,
                taxable_amount=in_slab,
                tax=slab_tax,
            )
        )
    return tax, rows


def marginal_rate(taxable_income: Decimal, slabs: Sequence[Slab]) -> Decimal:
    """Rate of the slab the last rupee of taxable_income falls in (0 for no income)."""
    if taxable_income <= 0:
        return ZERO
    for slab in slabs:
        if slab.upper is None or taxable_income <= slab.upper:
            return slab.rate
    return slabs[-1].rate
