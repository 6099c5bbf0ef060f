"""
schemas.py — Evaluator Pydantic v2 data contracts.

Defines:
  - IncomeProfile, TaxesPaid, DeductionClaim   (normalized pipeline inputs)
  - DeductionLine, DeductionSummary            (deduction capper output, audit display)
  - SlabBreakdownRow                           (one taxed slab)
  - ComputationResult                          (full computation for one regime)
  - RegimeComparison                           (old vs new — comparator output)
  - ComputationResponse                        (result + run-store metadata)
  - DeductionRecordResponse                    (itemised deduction record)
  - TaxesPaidRecordResponse, CarryForwardRecordResponse  (TDS/TCS credits, brought-forward losses)
  - CapitalGainResult, CapitalGainsSummary     (capital gains calculator output)

Every monetary field is a Decimal. Pipeline-internal models keep exact values;
ComputationResult carries the reported figures rounded to whole rupees. JSON
serialization turns whole amounts into ints and rates into floats.
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, PlainSerializer

from taxcompute.intake.schemas import AgeGroup, AssetType, LossType, Regime, Section


def _money_to_json(value: Decimal) -> Union[int, float]:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


Money = Annotated[Decimal, PlainSerializer(_money_to_json, return_type=Union[int, float], when_used="json")]
Rate = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Normalized inputs
# ---------------------------------------------------------------------------

class IncomeProfile(BaseModel):
    """
    Normalized, non-negative income per category (INR, paise precision).

    gross_income excludes `exempt`; total_income = max(0, gross - exempt).
    adjustments lists tolerant-parsing corrections, e.g. "income-clamped:salary".
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    salary: Money = ZERO
    interest: Money = ZERO
    short_term_capital_gain: Money = ZERO
    long_term_capital_gain: Money = ZERO
    house_property: Money = ZERO
    virtual_digital_asset: Money = ZERO
    other: Money = ZERO
    exempt: Money = ZERO
    adjustments: Tuple[str, ...] = ()

    @property
    def gross_income(self) -> Decimal:
        return (
            self.salary
            + self.interest
            + self.short_term_capital_gain
            + self.long_term_capital_gain
            + self.house_property
            + self.virtual_digital_asset
            + self.other
        )

    @property
    def total_income(self) -> Decimal:
        return max(ZERO, self.gross_income - self.exempt)


class TaxesPaid(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    tds: Money = ZERO
    tcs: Money = ZERO
    advance_tax: Money = ZERO
    self_assessment_tax: Money = ZERO

    @property
    def total(self) -> Decimal:
        return self.tds + self.tcs + self.advance_tax + self.self_assessment_tax


class DeductionClaim(BaseModel):
    """
    Claimed amount for one section.
    senior: age-bracket flag of the insured/claiming party — selects the senior cap.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    section: Section
    claimed: Money
    senior: bool = False
    components: Tuple[Dict[str, Any], ...] = ()


# ---------------------------------------------------------------------------
# Deduction capper output
# ---------------------------------------------------------------------------

class DeductionLine(BaseModel):
    """
    One section after capping.

    Invariants: allowed <= min(claimed, cap); cap_applied == (claimed > cap).
    cap is None for uncapped sections and for sections the regime disallows
    (eligible=False, allowed=0).
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    section: Section
    claimed: Money
    cap: Optional[Money] = None
    allowed: Money
    cap_applied: bool = False
    eligible: bool = True


class DeductionSummary(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    standard_deduction: Money
    lines: Tuple[DeductionLine, ...] = ()
    chapter_total: Money = ZERO          # Σ allowed across sections
    total_deductions: Money = ZERO       # standard_deduction + chapter_total
    applied_rule_tags: Tuple[str, ...] = ()

    def line(self, section: Section) -> Optional[DeductionLine]:
        for line in self.lines:
            if line.section == section:
                return line
        return None


# ---------------------------------------------------------------------------
# ComputationResult — full tax computation for one regime
# ---------------------------------------------------------------------------

class SlabBreakdownRow(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    lower: Money
    upper: Optional[Money] = None     # None → unbounded top slab
    rate: Rate
    taxable_amount: Money
    tax: Money


class ComputationResult(BaseModel):
    """
    Complete tax computation result for a single regime.

    Computation sequence (order determines correctness):
      1. gross_income = Σ income categories (exempt excluded)
      2. total_income = gross_income - exempt_income
      3. total_deductions = standard deduction + Σ capped, regime-eligible sections
      4. taxable_income = max(0, total_income - total_deductions)
      5. slab_tax = progressive bracket calculation
      6. rebate (87A) → tax_after_rebate
      7. surcharge with marginal relief → tax_after_surcharge
      8. cess on (tax_after_rebate + surcharge)
      9. total_tax_liability = tax_after_surcharge + cess
     10. refund_or_due = total_tax_paid - total_tax_liability (positive → refund)

    All money fields are rounded half-up to whole rupees; the arithmetic that
    produced them ran on exact decimals.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    assessment_year: str
    regime: Regime
    age_group: AgeGroup

    gross_income: Money
    exempt_income: Money
    total_income: Money
    standard_deduction: Money
    total_deductions: Money
    taxable_income: Money
    slab_tax: Money
    rebate: Money
    tax_after_rebate: Money
    surcharge: Money
    marginal_relief: Money
    tax_after_surcharge: Money
    cess: Money
    total_tax_liability: Money
    total_tax_paid: Money
    refund_or_due: Money

    slab_breakdown: Tuple[SlabBreakdownRow, ...] = ()
    deductions: Tuple[DeductionLine, ...] = ()
    applied_rule_tags: Tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# RegimeComparison — comparator output
# ---------------------------------------------------------------------------

class RegimeComparison(BaseModel):
    """
    Output of compare_regimes().

    recommended: lower total_tax_liability; ties go to the new regime.
    savings: |old - new|.
    Suggestions are separate per regime — never merge them into a single field.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    old_regime: ComputationResult
    new_regime: ComputationResult
    recommended: Regime
    savings: Money
    rationale: str
    old_regime_suggestions: Tuple[str, ...] = ()
    new_regime_suggestions: Tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# ComputationResponse — what compute_or_fetch() returns
# ---------------------------------------------------------------------------

class ComputationResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    run_id: Optional[str] = None        # None when the result could not be persisted
    user_id: str
    assessment_year: str
    input_hash: str
    idempotency_key: Optional[str] = None
    cached: bool = False
    persisted: bool = True
    warnings: List[str] = []
    created_at: Optional[datetime] = None

    result: ComputationResult
    comparison: Optional[RegimeComparison] = None

    @property
    def recommended(self) -> Optional[Regime]:
        return self.comparison.recommended if self.comparison else None

    @property
    def savings(self) -> Optional[Decimal]:
        return self.comparison.savings if self.comparison else None

    def to_payload(self) -> dict:
        """
        Flatten into the public response shape: ComputationResult fields at the
        top level, plus run metadata and (when requested) the comparison.
        """
        payload = self.result.model_dump(mode="json")
        payload.update(
            run_id=self.run_id,
            user_id=self.user_id,
            input_hash=self.input_hash,
            idempotency_key=self.idempotency_key,
            cached=self.cached,
            persisted=self.persisted,
            warnings=list(self.warnings),
            created_at=self.created_at.isoformat() if self.created_at else None,
        )
        if self.comparison is not None:
            comparison = self.comparison.model_dump(mode="json")
            payload.update(
                recommended=comparison["recommended"],
                savings=comparison["savings"],
                comparison=comparison,
            )
        return payload


# ---------------------------------------------------------------------------
# Deduction records
# ---------------------------------------------------------------------------

class DeductionRecordResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    record_id: str
    user_id: str
    assessment_year: str
    section: str                         # "80C", "80D" or "OTHER"
    idempotency_key: Optional[str] = None
    total_claimed: Money
    total_allowed: Money
    cap_applied: bool
    saved_components: List[Dict[str, Any]] = []
    breakdown: Dict[str, DeductionLine] = {}
    cached: bool = False


class TaxesPaidRecordResponse(BaseModel):
    """Stored TDS / TCS credits with per-kind totals."""
    model_config = ConfigDict(extra="forbid")

    record_id: str
    user_id: str
    assessment_year: str
    idempotency_key: Optional[str] = None
    total_tds: Money
    total_tcs: Money
    total: Money
    entries_count: Dict[str, int] = {}
    saved_entries: List[Dict[str, Any]] = []
    cached: bool = False


class LossOffset(BaseModel):
    """Brought-forward losses of one type: available for set-off vs lapsed."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    loss_type: LossType
    carried_forward: Money
    available: Money
    lapsed: Money


class CarryForwardRecordResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    record_id: str
    user_id: str
    assessment_year: str
    idempotency_key: Optional[str] = None
    total_carried_forward: Money
    total_available: Money
    available_offsets: Dict[LossType, LossOffset] = {}
    saved_losses: List[Dict[str, Any]] = []
    cached: bool = False


RecordResponse = Union[DeductionRecordResponse, TaxesPaidRecordResponse, CarryForwardRecordResponse]


# ---------------------------------------------------------------------------
# Capital gains
# ---------------------------------------------------------------------------

class CapitalGainResult(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    transaction_id: str
    asset_type: AssetType
    purchase_date: date
    sale_date: date
    holding_period_days: int
    is_long_term: bool
    purchase_price: Money
    sale_price: Money
    expenses: Money
    cost_of_acquisition: Money          # indexed cost when indexation_applied
    indexation_applied: bool
    gain: Money                         # negative → loss


class CapitalGainsSummary(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    transactions: Tuple[CapitalGainResult, ...]
    short_term_gain: Money
    long_term_gain: Money
    short_term_loss: Money
    long_term_loss: Money


__all__ = [
    "Money",
    "Rate",
    "ZERO",
    "IncomeProfile",
    "TaxesPaid",
    "DeductionClaim",
    "DeductionLine",
    "DeductionSummary",
    "SlabBreakdownRow",
    "ComputationResult",
    "RegimeComparison",
    "ComputationResponse",
    "DeductionRecordResponse",
    "TaxesPaidRecordResponse",
    "LossOffset",
    "CarryForwardRecordResponse",
    "RecordResponse",
    "CapitalGainResult",
    "CapitalGainsSummary",
]
