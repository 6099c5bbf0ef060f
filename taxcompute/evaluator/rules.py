"""
rules.py — Versioned tax rule repository.

One frozen TaxRuleSet per (assessment_year, regime). Every figure the pipeline
uses (slabs, standard deduction, section caps, 87A rebate, surcharge bands, cess)
lives here as data; the pipeline itself has no year or regime branches.

Rule sets are validated when this module is imported, so a malformed table fails
at process start rather than on the first request that happens to touch it.

Adding a year = adding one entry per regime to RULE_SETS.
"""
from decimal import Decimal
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, model_validator

from taxcompute.errors import RuleSetNotFoundError, UnsupportedAssessmentYearError
from taxcompute.intake.schemas import AgeGroup, LossType, Regime, Section

LAKH = Decimal("100000")
CRORE = Decimal("10000000")


# ---------------------------------------------------------------------------
# Rule models
# ---------------------------------------------------------------------------

class Slab(BaseModel):
    """One tax bracket. upper=None → unbounded top slab."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    lower: Decimal
    upper: Optional[Decimal] = None
    rate: Decimal


class SurchargeBand(BaseModel):
    """Applies when taxable income exceeds threshold."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    threshold: Decimal
    rate: Decimal


class RebateConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    max_income: Decimal       # rebate only when taxable income <= max_income
    max_rebate: Decimal


class DeductionCap(BaseModel):
    """
    Cap for one section.

    limit / senior_limit: flat ceilings (senior_limit used when the claim is flagged senior).
    income_percentage × percentage_base: percentage ceiling (80CCD(2), 80G).
    All None → section allowed but uncapped (80E).
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    limit: Optional[Decimal] = None
    senior_limit: Optional[Decimal] = None
    income_percentage: Optional[Decimal] = None
    percentage_base: Optional[Literal["salary", "total_income"]] = None

    @model_validator(mode="after")
    def _percentage_needs_base(self) -> "DeductionCap":
        if (self.income_percentage is None) != (self.percentage_base is None):
            raise ValueError("income_percentage and percentage_base must be given together")
        return self

    def resolve(self, senior: bool, salary: Decimal, total_income: Decimal) -> Optional[Decimal]:
        """Concrete ceiling for a claim, or None when uncapped."""
        if self.income_percentage is not None:
            base = salary if self.percentage_base == "salary" else total_income
            return base * self.income_percentage
        if senior and self.senior_limit is not None:
            return self.senior_limit
        return self.limit


class TaxRuleSet(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    assessment_year: str
    financial_year: str
    regime: Regime
    slabs: Dict[AgeGroup, Tuple[Slab, ...]]
    standard_deduction: Decimal
    deduction_caps: Dict[Section, DeductionCap]
    rebate: RebateConfig
    surcharge_bands: Tuple[SurchargeBand, ...]
    cess_rate: Decimal

    @model_validator(mode="after")
    def _validate_tables(self) -> "TaxRuleSet":
        """Slab tables: start at 0, contiguous, ascending, non-decreasing rates, open top."""
        label = f"AY {self.assessment_year} {self.regime.value}"
        missing = [g.value for g in AgeGroup if g not in self.slabs]
        if missing:
            raise ValueError(f"{label}: no slab table for {', '.join(missing)}")

        for group, table in self.slabs.items():
            if not table:
                raise ValueError(f"{label}/{group.value}: empty slab table")
            if table[0].lower != 0:
                raise ValueError(f"{label}/{group.value}: first slab must start at 0")
            if table[-1].upper is not None:
                raise ValueError(f"{label}/{group.value}: last slab must be unbounded")
            for prev, cur in zip(table, table[1:]):
                if prev.upper is None or prev.upper != cur.lower:
                    raise ValueError(f"{label}/{group.value}: slabs not contiguous at {cur.lower}")
                if cur.rate < prev.rate:
                    raise ValueError(f"{label}/{group.value}: slab rates must be non-decreasing")
            for slab in table:
                if slab.upper is not None and slab.upper <= slab.lower:
                    raise ValueError(f"{label}/{group.value}: empty slab at {slab.lower}")

        for prev, cur in zip(self.surcharge_bands, self.surcharge_bands[1:]):
            if cur.threshold <= prev.threshold or cur.rate < prev.rate:
                raise ValueError(f"{label}: surcharge bands must ascend")
        return self

    def slabs_for(self, age_group: AgeGroup) -> Tuple[Slab, ...]:
        return self.slabs[age_group]

    def allows(self, section: Section) -> bool:
        return section in self.deduction_caps


# ---------------------------------------------------------------------------
# Table builders
# ---------------------------------------------------------------------------

def _slabs(*bands: Tuple[Optional[int], int]) -> Tuple[Slab, ...]:
    """_slabs((250000, 0), (500000, 5), (None, 30)) — (upper bound, rate %) pairs."""
    table: List[Slab] = []
    lower = Decimal("0")
    for upper, rate in bands:
        upper_d = Decimal(upper) if upper is not None else None
        table.append(Slab(lower=lower, upper=upper_d, rate=Decimal(rate) / 100))
        if upper_d is not None:
            lower = upper_d
    return tuple(table)


def _bands(*bands: Tuple[Decimal, int]) -> Tuple[SurchargeBand, ...]:
    return tuple(SurchargeBand(threshold=t, rate=Decimal(r) / 100) for t, r in bands)


def _flat(limit: int, senior_limit: Optional[int] = None) -> DeductionCap:
    return DeductionCap(
        limit=Decimal(limit),
        senior_limit=Decimal(senior_limit) if senior_limit is not None else None,
    )


def _percent(rate: int, base: str) -> DeductionCap:
    return DeductionCap(income_percentage=Decimal(rate) / 100, percentage_base=base)


CESS_RATE = Decimal("0.04")

OLD_REGIME_SLABS = {
    AgeGroup.general: _slabs((250000, 0), (500000, 5), (1000000, 20), (None, 30)),
    AgeGroup.senior: _slabs((300000, 0), (500000, 5), (1000000, 20), (None, 30)),
    AgeGroup.super_senior: _slabs((500000, 0), (1000000, 20), (None, 30)),
}

OLD_REGIME_CAPS = {
    Section.section_80c: _flat(150000),
    Section.section_80d_self: _flat(25000, senior_limit=50000),
    Section.section_80d_parents: _flat(25000, senior_limit=50000),
    Section.section_80d_preventive: _flat(5000),
    Section.section_80tta: _flat(10000),
    Section.section_80ttb: _flat(50000),
    Section.section_80ccd1b: _flat(50000),
    Section.section_80ccd2: _percent(10, "salary"),
    Section.section_80e: DeductionCap(),
    Section.section_80g: _percent(10, "total_income"),
    Section.section_24b: _flat(200000),
    Section.other: DeductionCap(),
}

OLD_REGIME_SURCHARGE = _bands(
    (50 * LAKH, 10), (1 * CRORE, 15), (2 * CRORE, 25), (5 * CRORE, 37),
)
# Budget 2023 capped the new-regime surcharge at 25%
NEW_REGIME_SURCHARGE = _bands(
    (50 * LAKH, 10), (1 * CRORE, 15), (2 * CRORE, 25),
)

# Assessment years a brought-forward loss stays available for set-off (s.72, 73, 74)
CARRY_FORWARD_YEARS = {
    LossType.short_term_capital: 8,
    LossType.long_term_capital: 8,
    LossType.business: 8,
    LossType.speculative: 4,
}

_FINANCIAL_YEARS = {"2024-25": "2023-24", "2025-26": "2024-25", "2026-27": "2025-26"}


def _old_regime(assessment_year: str) -> TaxRuleSet:
    return TaxRuleSet(
        assessment_year=assessment_year,
        financial_year=_FINANCIAL_YEARS[assessment_year],
        regime=Regime.old,
        slabs=OLD_REGIME_SLABS,
        standard_deduction=Decimal(50000),
        deduction_caps=OLD_REGIME_CAPS,
        rebate=RebateConfig(max_income=Decimal(500000), max_rebate=Decimal(12500)),
        surcharge_bands=OLD_REGIME_SURCHARGE,
        cess_rate=CESS_RATE,
    )


def _new_regime(
    assessment_year: str,
    slabs: Tuple[Slab, ...],
    standard_deduction: int,
    rebate: RebateConfig,
    employer_nps_percent: int,
) -> TaxRuleSet:
    # New regime has no age-based exemption limits
    return TaxRuleSet(
        assessment_year=assessment_year,
        financial_year=_FINANCIAL_YEARS[assessment_year],
        regime=Regime.new,
        slabs={group: slabs for group in AgeGroup},
        standard_deduction=Decimal(standard_deduction),
        deduction_caps={Section.section_80ccd2: _percent(employer_nps_percent, "salary")},
        rebate=rebate,
        surcharge_bands=NEW_REGIME_SURCHARGE,
        cess_rate=CESS_RATE,
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

RULE_SETS: Dict[Tuple[str, Regime], TaxRuleSet] = {}

for _ruleset in (
    _old_regime("2024-25"),
    _new_regime(
        "2024-25",
        _slabs((300000, 0), (600000, 5), (900000, 10), (1200000, 15), (1500000, 20), (None, 30)),
        standard_deduction=50000,
        rebate=RebateConfig(max_income=Decimal(700000), max_rebate=Decimal(25000)),
        employer_nps_percent=10,
    ),
    _old_regime("2025-26"),
    _new_regime(
        "2025-26",
        _slabs((300000, 0), (700000, 5), (1000000, 10), (1200000, 15), (1500000, 20), (None, 30)),
        standard_deduction=75000,
        rebate=RebateConfig(max_income=Decimal(700000), max_rebate=Decimal(25000)),
        employer_nps_percent=14,
    ),
    _old_regime("2026-27"),
    _new_regime(
        "2026-27",
        _slabs(
            (400000, 0), (800000, 5), (1200000, 10), (1600000, 15),
            (2000000, 20), (2400000, 25), (None, 30),
        ),
        standard_deduction=75000,
        rebate=RebateConfig(max_income=Decimal(1200000), max_rebate=Decimal(60000)),
        employer_nps_percent=14,
    ),
):
    RULE_SETS[(_ruleset.assessment_year, _ruleset.regime)] = _ruleset
del _ruleset


def supported_assessment_years() -> List[str]:
    return sorted({year for year, _ in RULE_SETS})


def get_rule_set(assessment_year: str, regime: Regime) -> TaxRuleSet:
    """
    Look up the rule set for (assessment_year, regime).

    Raises:
        UnsupportedAssessmentYearError: no rule sets at all for the year. There is
            no fallback to a "nearest" year.
        RuleSetNotFoundError: the year exists but not for this regime.
    """
    regime = Regime(regime)
    supported = supported_assessment_years()
    if assessment_year not in supported:
        raise UnsupportedAssessmentYearError(assessment_year, supported)
    try:
        return RULE_SETS[(assessment_year, regime)]
    except KeyError:
        raise RuleSetNotFoundError(assessment_year, regime.value) from None
