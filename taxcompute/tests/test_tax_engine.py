"""
Tax engine test suite — AY 2024-25, 2025-26, 2026-27.
All expected values hand-computed from the slab tables in rules.py.
Tolerance: ±₹1 on monetary assertions (reported figures are rounded to rupees).

Groups:
  1. Parametrised single-regime cases (slabs, rebate, surcharge, cess)
  2. Regime comparison cases
  3. Properties: monotonicity, continuity, marginal relief, determinism
  4. Canonical input hash
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

import pytest

from taxcompute.evaluator.levies import compute_surcharge, tax_with_surcharge
from taxcompute.evaluator.rules import get_rule_set
from taxcompute.evaluator.slabs import calculate_slab_tax
from taxcompute.evaluator.tax_engine import (
    compare_regimes,
    compute_for_regime,
    compute_input_hash,
    prepare_inputs,
)
from taxcompute.intake.schemas import AgeGroup, ComputationRequest, Regime


def _request(
    assessment_year: str = "2025-26",
    regime: str = "new",
    age_group: str = "general",
    incomes: dict | None = None,
    deductions: dict | None = None,
    taxes_paid: dict | None = None,
    **extra,
) -> ComputationRequest:
    return ComputationRequest(
        user_id="user-1",
        assessment_year=assessment_year,
        regime=regime,
        age_group=age_group,
        incomes=incomes or {},
        deductions=deductions or {},
        taxes_paid=taxes_paid or {},
        **extra,
    )


def _compute(request: ComputationRequest):
    return compute_for_regime(prepare_inputs(request), request.regime)


# ===========================================================================
# TEST GROUP 1: Parametrised single-regime cases
# ===========================================================================

@dataclass
class TaxCase:
    """Single parametrised test case for the pipeline."""
    description: str
    request_kwargs: dict
    expected_taxable: float
    expected_slab_tax: float
    expected_total: float
    expected_rebate: float = field(default=0.0)
    expected_surcharge: float = field(default=0.0)


TAX_CASES: list[TaxCase] = [

    # -------------------------------------------------------------------
    # New regime AY 2025-26 (3/7/10/12/15 lakh, ₹75K std, 87A ≤ 7L)
    # -------------------------------------------------------------------
    TaxCase(
        description="new_2025_taxable_12L_no_rebate",
        request_kwargs=dict(incomes={"salary": 1_075_000, "other": 200_000}),
        expected_taxable=1_200_000,
        expected_slab_tax=80_000,       # 20,000 + 30,000 + 30,000
        expected_total=83_200,          # + 4% cess
    ),
    TaxCase(
        description="new_2025_taxable_5_25L_fully_rebated",
        request_kwargs=dict(incomes={"salary": 500_000, "other": 100_000}),
        expected_taxable=525_000,
        expected_slab_tax=11_250,
        expected_rebate=11_250,
        expected_total=0,
    ),
    TaxCase(
        description="new_2025_80c_ignored",
        request_kwargs=dict(incomes={"salary": 1_275_000}, deductions={"section_80c": 150_000}),
        expected_taxable=1_200_000,
        expected_slab_tax=80_000,
        expected_total=83_200,
    ),
    TaxCase(
        description="new_2025_employer_nps_14pct",
        request_kwargs=dict(incomes={"salary": 1_500_000}, deductions={"section_80ccd2": 200_000}),
        expected_taxable=1_225_000,     # cap 2,10,000 → full 2,00,000 allowed
        expected_slab_tax=85_000,       # 80,000 + 25,000 × 20%
        expected_total=88_400,
    ),
    TaxCase(
        description="new_2025_surcharge_10pct_no_relief",
        request_kwargs=dict(incomes={"other": 6_000_000}),
        expected_taxable=6_000_000,     # no salary → no standard deduction
        expected_slab_tax=1_490_000,    # 1,40,000 + 45,00,000 × 30%
        expected_surcharge=149_000,
        expected_total=1_704_560,       # (14,90,000 + 1,49,000) × 1.04
    ),
    TaxCase(
        description="new_2025_surcharge_marginal_relief_just_above_50L",
        request_kwargs=dict(incomes={"other": 5_010_000}),
        expected_taxable=5_010_000,
        expected_slab_tax=1_193_000,
        expected_surcharge=7_000,       # capped: 11,90,000 + 10,000 − 11,93,000
        expected_total=1_248_000,
    ),
    TaxCase(
        description="new_2025_surcharge_tops_at_25pct",
        request_kwargs=dict(incomes={"other": 60_000_000}),
        expected_taxable=60_000_000,
        expected_slab_tax=17_690_000,
        expected_surcharge=4_422_500,   # 25%, no 37% band in the new regime
        expected_total=22_997_000,
    ),

    # -------------------------------------------------------------------
    # New regime AY 2024-25 (3/6/9/12/15 lakh, ₹50K std)
    # -------------------------------------------------------------------
    TaxCase(
        description="new_2024_taxable_7L_fully_rebated",
        request_kwargs=dict(assessment_year="2024-25", incomes={"salary": 750_000}),
        expected_taxable=700_000,
        expected_slab_tax=25_000,
        expected_rebate=25_000,
        expected_total=0,
    ),
    TaxCase(
        description="new_2024_taxable_15L",
        request_kwargs=dict(assessment_year="2024-25", incomes={"salary": 1_550_000}),
        expected_taxable=1_500_000,
        expected_slab_tax=150_000,
        expected_total=156_000,
    ),
    TaxCase(
        description="new_2024_employer_nps_10pct_cap",
        request_kwargs=dict(
            assessment_year="2024-25",
            incomes={"salary": 1_500_000},
            deductions={"section_80ccd2": 200_000},
        ),
        expected_taxable=1_300_000,     # 80CCD(2) capped at 1,50,000
        expected_slab_tax=110_000,
        expected_total=114_400,
    ),

    # -------------------------------------------------------------------
    # New regime AY 2026-27 (4/8/12/16/20/24 lakh, 87A ≤ 12L up to ₹60K)
    # -------------------------------------------------------------------
    TaxCase(
        description="new_2026_taxable_12L_fully_rebated",
        request_kwargs=dict(assessment_year="2026-27", incomes={"salary": 1_275_000}),
        expected_taxable=1_200_000,
        expected_slab_tax=60_000,
        expected_rebate=60_000,
        expected_total=0,
    ),
    TaxCase(
        description="new_2026_taxable_25L",
        request_kwargs=dict(assessment_year="2026-27", incomes={"salary": 2_575_000}),
        expected_taxable=2_500_000,
        expected_slab_tax=330_000,
        expected_total=343_200,
    ),

    # -------------------------------------------------------------------
    # Old regime (2.5/5/10 lakh general; 3L senior; 5L super senior)
    # -------------------------------------------------------------------
    TaxCase(
        description="old_general_80c_80d",
        request_kwargs=dict(
            regime="old",
            incomes={"salary": 1_000_000},
            deductions={"section_80c": 150_000, "section_80d": 25_000},
        ),
        expected_taxable=775_000,
        expected_slab_tax=67_500,       # 12,500 + 2,75,000 × 20%
        expected_total=70_200,
    ),
    TaxCase(
        description="old_senior_slabs",
        request_kwargs=dict(regime="old", age_group="senior", incomes={"salary": 600_000}),
        expected_taxable=550_000,
        expected_slab_tax=20_000,       # 10,000 + 10,000
        expected_total=20_800,
    ),
    TaxCase(
        description="old_super_senior_slabs",
        request_kwargs=dict(regime="old", age_group="super_senior", incomes={"salary": 900_000}),
        expected_taxable=850_000,
        expected_slab_tax=70_000,
        expected_total=72_800,
    ),
    TaxCase(
        description="old_taxable_5L_fully_rebated",
        request_kwargs=dict(regime="old", incomes={"salary": 550_000}),
        expected_taxable=500_000,
        expected_slab_tax=12_500,
        expected_rebate=12_500,
        expected_total=0,
    ),
    TaxCase(
        description="old_standard_deduction_limited_to_salary",
        request_kwargs=dict(regime="old", incomes={"salary": 30_000, "interest": 800_000}),
        expected_taxable=800_000,
        expected_slab_tax=72_500,
        expected_total=75_400,
    ),
    TaxCase(
        description="old_exempt_income_subtracted",
        request_kwargs=dict(regime="old", incomes={"salary": 1_200_000, "exempt": 200_000}),
        expected_taxable=950_000,
        expected_slab_tax=102_500,
        expected_total=106_600,
    ),
    TaxCase(
        description="old_string_amounts_parsed",
        request_kwargs=dict(
            regime="old",
            incomes={"salary": "₹10,00,000"},
            deductions={"section_80c": "Rs. 1,50,000/-", "section_80d": "25,000"},
        ),
        expected_taxable=775_000,
        expected_slab_tax=67_500,
        expected_total=70_200,
    ),
]


@pytest.mark.parametrize(
    "case",
    [pytest.param(c, id=c.description) for c in TAX_CASES],
)
def test_single_regime_cases(case: TaxCase) -> None:
    result = _compute(_request(**case.request_kwargs))
    assert float(result.taxable_income) == pytest.approx(case.expected_taxable, abs=1)
    assert float(result.slab_tax) == pytest.approx(case.expected_slab_tax, abs=1)
    assert float(result.rebate) == pytest.approx(case.expected_rebate, abs=1)
    assert float(result.surcharge) == pytest.approx(case.expected_surcharge, abs=1)
    assert float(result.total_tax_liability) == pytest.approx(case.expected_total, abs=1), (
        f"{case.description}: expected ₹{case.expected_total:,.0f}, got ₹{result.total_tax_liability:,.0f}"
    )


def test_reported_figures_chain() -> None:
    """total = tax_after_rebate + surcharge + cess; refund_or_due = paid − total."""
    result = _compute(_request(
        incomes={"salary": 1_075_000, "other": 200_000},
        taxes_paid={"tds": 90_000, "advance_tax": 10_000},
    ))
    assert result.gross_income == 1_275_000
    assert result.standard_deduction == 75_000
    assert result.tax_after_rebate == 80_000
    assert result.cess == 3_200
    assert result.total_tax_paid == 100_000
    assert result.refund_or_due == 16_800           # positive → refund
    assert result.tax_after_surcharge + result.cess == result.total_tax_liability


def test_reported_figures_chain_with_paise_input() -> None:
    """Cess is levied on the rounded tax, so the rounded figures still add up."""
    result = _compute(_request(regime="old", incomes={"salary": "650007.25"}))
    assert result.taxable_income == 600_007           # 6,00,007.25
    assert result.slab_tax == 32_501                  # 12,500 + 1,00,007.25 × 20% = 32,501.45
    assert result.tax_after_rebate == 32_501
    assert result.cess == 1_300                       # 32,501 × 4% = 1,300.04
    assert result.total_tax_liability == 33_801
    assert result.tax_after_rebate + result.surcharge + result.cess == result.total_tax_liability
    assert result.slab_tax - result.rebate == result.tax_after_rebate


def test_tax_due_is_negative_refund() -> None:
    result = _compute(_request(incomes={"salary": 1_275_000}, taxes_paid={"tds": 50_000}))
    assert result.refund_or_due == -33_200


def test_rebate_ceiling_is_a_hard_cliff() -> None:
    """One rupee over the 87A ceiling → no rebate at all."""
    at_ceiling = _compute(_request(incomes={"salary": 775_000}))
    above = _compute(_request(incomes={"salary": 775_001}))
    assert at_ceiling.taxable_income == 700_000
    assert at_ceiling.total_tax_liability == 0
    assert above.rebate == 0
    assert above.slab_tax == 20_000


def test_slab_breakdown_rows() -> None:
    result = _compute(_request(incomes={"salary": 1_075_000, "other": 200_000}))
    rows = [(r.lower, r.upper, r.rate, r.taxable_amount, r.tax) for r in result.slab_breakdown]
    assert rows == [
        (0, 300_000, Decimal("0"), 300_000, 0),
        (300_000, 700_000, Decimal("0.05"), 400_000, 20_000),
        (700_000, 1_000_000, Decimal("0.10"), 300_000, 30_000),
        (1_000_000, 1_200_000, Decimal("0.15"), 200_000, 30_000),
    ]
    assert sum(r.tax for r in result.slab_breakdown) == result.slab_tax


def test_zero_income_has_no_breakdown() -> None:
    result = _compute(_request())
    assert result.slab_breakdown == ()
    assert result.total_tax_liability == 0


def test_applied_rule_tags() -> None:
    result = _compute(_request(regime="old", age_group="senior", incomes={"salary": 600_000}))
    assert "standard-deduction-50000" in result.applied_rule_tags
    assert "senior-citizen-slabs" in result.applied_rule_tags
    assert "health-education-cess-4%" in result.applied_rule_tags
    assert "rebate-87A" not in result.applied_rule_tags


def test_marginal_relief_tags() -> None:
    result = _compute(_request(incomes={"other": 5_010_000}))
    assert "surcharge-applied" in result.applied_rule_tags
    assert "marginal-relief" in result.applied_rule_tags
    assert result.marginal_relief == 112_300


def test_taxable_income_clamped_when_deductions_exceed_income() -> None:
    result = _compute(_request(
        regime="old",
        incomes={"interest": 100_000},
        deductions={"section_80c": 150_000},
    ))
    assert result.taxable_income == 0
    assert "taxable-income-clamped" in result.applied_rule_tags


def test_negative_and_garbage_income_tagged() -> None:
    result = _compute(_request(incomes={"salary": -5_000, "interest": "n/a", "other": 100_000}))
    assert result.gross_income == 100_000
    assert "income-clamped:salary" in result.applied_rule_tags
    assert "income-unparseable:interest" in result.applied_rule_tags


# ===========================================================================
# TEST GROUP 2: Regime comparison
# ===========================================================================

def test_compare_regimes_tie_goes_to_new() -> None:
    comparison = compare_regimes(prepare_inputs(_request(incomes={"salary": 500_000})))
    assert comparison.old_regime.total_tax_liability == 0
    assert comparison.new_regime.total_tax_liability == 0
    assert comparison.recommended == Regime.new
    assert comparison.savings == 0
    assert "same tax" in comparison.rationale


def test_compare_regimes_old_wins_with_heavy_deductions() -> None:
    comparison = compare_regimes(prepare_inputs(_request(
        incomes={"salary": 1_000_000},
        deductions={
            "section_80c": 150_000,
            "section_80d": 25_000,
            "section_24b": 200_000,
            "section_80ccd": 50_000,
        },
    )))
    assert comparison.old_regime.taxable_income == 525_000
    assert comparison.old_regime.total_tax_liability == 18_200
    assert comparison.new_regime.taxable_income == 925_000
    assert comparison.new_regime.total_tax_liability == 44_200
    assert comparison.recommended == Regime.old
    assert comparison.savings == 26_000
    assert comparison.rationale.startswith("Old Regime saves ₹26,000")


def test_compare_regimes_new_wins_without_deductions() -> None:
    comparison = compare_regimes(prepare_inputs(_request(incomes={"salary": 1_500_000})))
    assert comparison.old_regime.total_tax_liability == 257_400
    assert comparison.new_regime.total_tax_liability == 130_000
    assert comparison.recommended == Regime.new
    assert comparison.savings == 127_400


def test_new_regime_marks_old_only_sections_ineligible() -> None:
    comparison = compare_regimes(prepare_inputs(_request(
        incomes={"salary": 1_000_000},
        deductions={"section_80c": 150_000, "section_80ccd2": 50_000},
    )))
    lines = {line.section.value: line for line in comparison.new_regime.deductions}
    assert lines["80C"].eligible is False
    assert lines["80C"].allowed == 0
    assert lines["80CCD2"].eligible is True
    assert lines["80CCD2"].allowed == 50_000


def test_suggestions_per_regime_capped_at_three() -> None:
    comparison = compare_regimes(prepare_inputs(_request(incomes={"salary": 2_000_000})))
    assert 0 < len(comparison.old_regime_suggestions) <= 3
    assert all("Old Regime" in s for s in comparison.old_regime_suggestions)
    # Biggest saving first: 24(b) headroom ₹2,00,000 at 31.2%
    assert "Section 24(b)" in comparison.old_regime_suggestions[0]
    assert all("New Regime" in s for s in comparison.new_regime_suggestions)


def test_no_suggestions_when_no_tax_payable() -> None:
    comparison = compare_regimes(prepare_inputs(_request(incomes={"salary": 500_000})))
    assert comparison.old_regime_suggestions == ()
    assert comparison.new_regime_suggestions == ()


# ===========================================================================
# TEST GROUP 3: Properties
# ===========================================================================

@pytest.mark.parametrize("assessment_year", ["2024-25", "2025-26", "2026-27"])
@pytest.mark.parametrize("regime", [Regime.old, Regime.new])
@pytest.mark.parametrize("age_group", list(AgeGroup))
def test_slab_tax_monotonic_and_continuous(assessment_year: str, regime: Regime, age_group: AgeGroup) -> None:
    """Slab tax never decreases and never jumps by more than the top rate × step."""
    slabs = get_rule_set(assessment_year, regime).slabs_for(age_group)
    top_rate = max(s.rate for s in slabs)
    step = Decimal(25_000)
    previous = Decimal(0)
    income = Decimal(0)
    while income <= Decimal(6_000_000):
        tax, _ = calculate_slab_tax(income, slabs)
        assert tax >= previous
        assert tax - previous <= step * top_rate
        previous = tax
        income += step


@pytest.mark.parametrize("regime", [Regime.old, Regime.new])
@pytest.mark.parametrize("over", [1, 100, 5_000, 50_000, 250_000])
def test_marginal_relief_bounds_tax_increase(regime: Regime, over: int) -> None:
    """Crossing a surcharge threshold by ₹X never raises tax + surcharge by more than ₹X."""
    rule_set = get_rule_set("2025-26", regime)
    slabs = rule_set.slabs_for(AgeGroup.general)
    for band in rule_set.surcharge_bands:
        income = band.threshold + over
        slab_tax, _ = calculate_slab_tax(income, slabs)
        outcome = compute_surcharge(income, slab_tax, rule_set, AgeGroup.general)
        at_threshold = tax_with_surcharge(band.threshold, rule_set, AgeGroup.general)
        assert (slab_tax + outcome.surcharge) - at_threshold <= over
        assert outcome.surcharge >= 0
        assert outcome.marginal_relief >= 0


def test_total_liability_monotonic_in_income() -> None:
    """Between rebate cliffs and surcharge thresholds the total never drops with more income."""
    previous = Decimal(0)
    for salary in range(0, 20_000_001, 250_000):
        total = _compute(_request(regime="old", incomes={"salary": salary})).total_tax_liability
        assert total >= previous
        previous = total


def test_computation_is_deterministic() -> None:
    request = _request(
        regime="old",
        compare_regimes=True,
        incomes={"salary": 1_800_000, "interest": 40_000},
        deductions={"section_80c": 100_000, "section_80tta": 15_000},
    )
    first = compare_regimes(prepare_inputs(request))
    second = compare_regimes(prepare_inputs(request))
    assert first.model_dump(mode="json") == second.model_dump(mode="json")


# ===========================================================================
# TEST GROUP 4: Canonical input hash
# ===========================================================================

def test_input_hash_ignores_formatting_and_idempotency_key() -> None:
    numeric = _request(incomes={"salary": 1_200_000}, idempotency_key="a")
    text = _request(incomes={"salary": "₹12,00,000"}, idempotency_key="b")
    assert compute_input_hash(numeric) == compute_input_hash(text)


def test_input_hash_changes_with_regime_and_amount() -> None:
    base = compute_input_hash(_request(incomes={"salary": 1_200_000}))
    assert compute_input_hash(_request(regime="old", incomes={"salary": 1_200_000})) != base
    assert compute_input_hash(_request(incomes={"salary": 1_200_001})) != base
    assert len(base) == 64
