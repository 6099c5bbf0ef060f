"""
Capital gains calculator: holding period, indexation, loss handling.
"""
from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from taxcompute.intake.capital_gains import (
    compute_capital_gain,
    cost_inflation_index,
    financial_year_start,
    is_long_term,
    summarize_capital_gains,
    to_income_input,
)
from taxcompute.intake.schemas import AssetTransaction


def _txn(**kwargs) -> AssetTransaction:
    defaults = dict(
        asset_type="equity",
        purchase_date=date(2023, 1, 1),
        sale_date=date(2024, 6, 1),
        purchase_price=100_000,
        sale_price=150_000,
    )
    defaults.update(kwargs)
    return AssetTransaction(**defaults)


@pytest.mark.parametrize(
    "day, expected",
    [
        pytest.param(date(2024, 4, 1), 2024, id="first_day_of_fy"),
        pytest.param(date(2025, 3, 31), 2024, id="last_day_of_fy"),
        pytest.param(date(2024, 1, 15), 2023, id="january"),
    ],
)
def test_financial_year_start(day, expected) -> None:
    assert financial_year_start(day) == expected


def test_cost_inflation_index_clamps_to_table() -> None:
    assert cost_inflation_index(2015) == 254
    assert cost_inflation_index(1990) == 100
    assert cost_inflation_index(2040) == cost_inflation_index(2025)


@pytest.mark.parametrize(
    "asset_type, purchase, sale, expected",
    [
        pytest.param("equity", date(2023, 1, 1), date(2024, 1, 1), False, id="equity_365_days"),
        pytest.param("equity", date(2023, 1, 1), date(2024, 1, 2), True, id="equity_366_days"),
        pytest.param("real_estate", date(2022, 6, 15), date(2024, 6, 15), False, id="property_24_months"),
        pytest.param("real_estate", date(2022, 6, 15), date(2024, 6, 16), True, id="property_over_24_months"),
        pytest.param("unlisted_shares", date(2023, 1, 1), date(2024, 6, 1), False, id="unlisted_17_months"),
        pytest.param("gold", date(2023, 1, 1), date(2024, 6, 1), True, id="gold_17_months"),
    ],
)
def test_holding_period(asset_type, purchase, sale, expected) -> None:
    assert is_long_term(_txn(asset_type=asset_type, purchase_date=purchase, sale_date=sale)) is expected


def test_indexed_long_term_gain() -> None:
    result = compute_capital_gain(_txn(
        asset_type="gold",
        purchase_date=date(2015, 6, 1),
        sale_date=date(2024, 6, 1),
        purchase_price="₹1,00,000",
        sale_price=200_000,
        indexation=True,
    ))
    assert result.is_long_term is True
    assert result.indexation_applied is True
    # 1,00,000 × 363 / 254
    assert result.cost_of_acquisition == Decimal("142913.39")
    assert result.gain == Decimal("57086.61")


def test_equity_is_never_indexed() -> None:
    result = compute_capital_gain(_txn(
        purchase_date=date(2015, 6, 1),
        sale_date=date(2024, 6, 1),
        indexation=True,
    ))
    assert result.is_long_term is True
    assert result.indexation_applied is False
    assert result.cost_of_acquisition == Decimal(100_000)


def test_expenses_reduce_gain() -> None:
    result = compute_capital_gain(_txn(expenses="5,000"))
    assert result.gain == Decimal(45_000)


def test_sale_before_purchase_rejected() -> None:
    with pytest.raises(ValidationError):
        _txn(purchase_date=date(2024, 6, 1), sale_date=date(2024, 1, 1))


def test_summary_keeps_losses_separate() -> None:
    summary = summarize_capital_gains([
        _txn(transaction_id="a", purchase_date=date(2024, 1, 1), sale_date=date(2024, 6, 1),
             sale_price=130_000),                                    # short-term gain 30,000
        _txn(transaction_id="b", purchase_date=date(2024, 1, 1), sale_date=date(2024, 6, 1),
             sale_price=90_000),                                     # short-term loss 10,000
        _txn(transaction_id="c", purchase_date=date(2020, 1, 1), sale_date=date(2024, 6, 1),
             sale_price=250_000),                                    # long-term gain 1,50,000
    ])
    assert [t.transaction_id for t in summary.transactions] == ["a", "b", "c"]
    assert summary.short_term_gain == Decimal(30_000)
    assert summary.short_term_loss == Decimal(10_000)
    assert summary.long_term_gain == Decimal(150_000)
    assert summary.long_term_loss == 0

    income = to_income_input(summary)
    assert income.short_term == Decimal(30_000)
    assert income.long_term == Decimal(150_000)
