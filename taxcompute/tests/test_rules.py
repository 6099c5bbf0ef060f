"""
Rule repository: lookup, fail-fast on unknown years, table validation.
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from taxcompute.errors import RuleSetNotFoundError, UnsupportedAssessmentYearError
from taxcompute.evaluator.rules import (
    OLD_REGIME_CAPS,
    RULE_SETS,
    RebateConfig,
    Slab,
    TaxRuleSet,
    get_rule_set,
    supported_assessment_years,
)
from taxcompute.intake.schemas import AgeGroup, Regime, Section, normalize_assessment_year


def test_supported_years() -> None:
    assert supported_assessment_years() == ["2024-25", "2025-26", "2026-27"]
    assert len(RULE_SETS) == 6


@pytest.mark.parametrize(
    "assessment_year, regime, standard_deduction, rebate_ceiling",
    [
        pytest.param("2024-25", Regime.old, 50_000, 500_000, id="2024_old"),
        pytest.param("2024-25", Regime.new, 50_000, 700_000, id="2024_new"),
        pytest.param("2025-26", Regime.new, 75_000, 700_000, id="2025_new"),
        pytest.param("2026-27", Regime.new, 75_000, 1_200_000, id="2026_new"),
    ],
)
def test_rule_set_figures(assessment_year, regime, standard_deduction, rebate_ceiling) -> None:
    rule_set = get_rule_set(assessment_year, regime)
    assert rule_set.assessment_year == assessment_year
    assert rule_set.regime == regime
    assert rule_set.standard_deduction == standard_deduction
    assert rule_set.rebate.max_income == rebate_ceiling
    assert rule_set.cess_rate == Decimal("0.04")


def test_regime_accepts_plain_string() -> None:
    assert get_rule_set("2025-26", "old").regime == Regime.old


def test_new_regime_ignores_age() -> None:
    rule_set = get_rule_set("2025-26", Regime.new)
    assert rule_set.slabs_for(AgeGroup.general) == rule_set.slabs_for(AgeGroup.super_senior)


def test_new_regime_surcharge_stops_at_25pct() -> None:
    rates = [band.rate for band in get_rule_set("2025-26", Regime.new).surcharge_bands]
    assert max(rates) == Decimal("0.25")
    old_rates = [band.rate for band in get_rule_set("2025-26", Regime.old).surcharge_bands]
    assert max(old_rates) == Decimal("0.37")


def test_allows() -> None:
    new = get_rule_set("2026-27", Regime.new)
    assert new.allows(Section.section_80ccd2)
    assert not new.allows(Section.section_80c)


def test_unsupported_year_fails_fast() -> None:
    with pytest.raises(UnsupportedAssessmentYearError) as exc_info:
        get_rule_set("2019-20", Regime.new)
    assert exc_info.value.supported == ["2024-25", "2025-26", "2026-27"]
    assert exc_info.value.code == "UNSUPPORTED_ASSESSMENT_YEAR"


def test_missing_regime_for_supported_year(monkeypatch) -> None:
    trimmed = {key: value for key, value in RULE_SETS.items() if key != ("2026-27", Regime.old)}
    monkeypatch.setattr("taxcompute.evaluator.rules.RULE_SETS", trimmed)
    with pytest.raises(RuleSetNotFoundError):
        get_rule_set("2026-27", Regime.old)


@pytest.mark.parametrize(
    "raw, expected",
    [("2025-26", "2025-26"), ("AY 2025-26", "2025-26"), ("ay2026-27", "2026-27"), (" 2024-25 ", "2024-25")],
)
def test_normalize_assessment_year(raw, expected) -> None:
    assert normalize_assessment_year(raw) == expected


@pytest.mark.parametrize("raw", ["2025", "2025-27", "FY 2025-26", "25-26"])
def test_normalize_assessment_year_rejects(raw) -> None:
    with pytest.raises(ValueError):
        normalize_assessment_year(raw)


# ---------------------------------------------------------------------------
# Table validation
# ---------------------------------------------------------------------------

def _rule_set(slabs) -> TaxRuleSet:
    return TaxRuleSet(
        assessment_year="2099-00",
        financial_year="2098-99",
        regime=Regime.old,
        slabs={group: slabs for group in AgeGroup},
        standard_deduction=Decimal(0),
        deduction_caps=OLD_REGIME_CAPS,
        rebate=RebateConfig(max_income=Decimal(0), max_rebate=Decimal(0)),
        surcharge_bands=(),
        cess_rate=Decimal("0.04"),
    )


def _slab(lower, upper, rate) -> Slab:
    return Slab(
        lower=Decimal(lower),
        upper=Decimal(upper) if upper is not None else None,
        rate=Decimal(rate),
    )


def test_valid_custom_table() -> None:
    rule_set = _rule_set((_slab(0, 100, "0"), _slab(100, None, "0.1")))
    assert len(rule_set.slabs_for(AgeGroup.senior)) == 2


@pytest.mark.parametrize(
    "slabs",
    [
        pytest.param((_slab(10, None, "0.1"),), id="not_from_zero"),
        pytest.param((_slab(0, 100, "0"), _slab(150, None, "0.1")), id="gap"),
        pytest.param((_slab(0, 100, "0.2"), _slab(100, None, "0.1")), id="decreasing_rate"),
        pytest.param((_slab(0, 100, "0"), _slab(100, 200, "0.1")), id="bounded_top"),
        pytest.param((), id="empty"),
    ],
)
def test_malformed_table_rejected(slabs) -> None:
    with pytest.raises(ValidationError):
        _rule_set(slabs)


def test_rule_sets_are_frozen() -> None:
    rule_set = get_rule_set("2025-26", Regime.old)
    with pytest.raises(ValidationError):
        rule_set.cess_rate = Decimal("0.05")
