"""
capital_gains.py — Asset sale transactions → short-term / long-term gain figures.

Rules:
  - gain = sale_price - cost_of_acquisition - transfer expenses
  - long-term when held more than 365 days; more than 24 months for immovable
    property and unlisted shares
  - indexation (when requested) applies to long-term, non-equity assets only:
    cost × CII(sale FY) / CII(purchase FY)
  - a negative gain is a loss: reported, but contributes 0 to the taxable figure

Gains feed IncomeInput.capital_gains and are taxed through the slab pipeline
like every other income head.
"""
import calendar
import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable

from taxcompute.evaluator.schemas import ZERO, CapitalGainResult, CapitalGainsSummary
from taxcompute.intake.normalizer import PAISE, parse_money
from taxcompute.intake.schemas import AssetTransaction, AssetType, CapitalGainsInput

logger = logging.getLogger(__name__)

# Cost Inflation Index, keyed by the starting calendar year of the financial year
# (2024 → FY 2024-25). Base year FY 2001-02 = 100.
COST_INFLATION_INDEX: Dict[int, int] = {
    2001: 100, 2002: 105, 2003: 109, 2004: 113, 2005: 117, 2006: 122,
    2007: 129, 2008: 137, 2009: 148, 2010: 167, 2011: 184, 2012: 200,
    2013: 220, 2014: 240, 2015: 254, 2016: 264, 2017: 272, 2018: 280,
    2019: 289, 2020: 301, 2021: 317, 2022: 331, 2023: 348, 2024: 363,
    2025: 380,
}

LONG_TERM_DAYS = 365
# Assets whose long-term threshold is 24 months instead of 365 days
_TWENTY_FOUR_MONTH_ASSETS = {AssetType.real_estate, AssetType.unlisted_shares}
_EQUITY_ASSETS = {AssetType.equity, AssetType.equity_mutual_fund}


def financial_year_start(day: date) -> int:
    """1-Apr-2024 … 31-Mar-2025 → 2024."""
    return day.year if day.month >= 4 else day.year - 1


def cost_inflation_index(fy_start: int) -> int:
    """CII for a financial year, clamped to the table's first and last entries."""
    first, last = min(COST_INFLATION_INDEX), max(COST_INFLATION_INDEX)
    return COST_INFLATION_INDEX[min(max(fy_start, first), last)]


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year, month = day.year + month_index // 12, month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def is_long_term(transaction: AssetTransaction) -> bool:
    if transaction.asset_type in _TWENTY_FOUR_MONTH_ASSETS:
        return transaction.sale_date > _add_months(transaction.purchase_date, 24)
    return (transaction.sale_date - transaction.purchase_date).days > LONG_TERM_DAYS


def compute_capital_gain(transaction: AssetTransaction) -> CapitalGainResult:
    """Gain (or loss) for one transaction. Amount fields go through parse_money."""
    purchase_price = parse_money(transaction.purchase_price)
    sale_price = parse_money(transaction.sale_price)
    expenses = parse_money(transaction.expenses)

    long_term = is_long_term(transaction)
    indexation_applied = (
        transaction.indexation and long_term and transaction.asset_type not in _EQUITY_ASSETS
    )
    cost = purchase_price
    if indexation_applied:
        cii_purchase = cost_inflation_index(financial_year_start(transaction.purchase_date))
        cii_sale = cost_inflation_index(financial_year_start(transaction.sale_date))
        cost = (purchase_price * cii_sale / cii_purchase).quantize(PAISE, rounding=ROUND_HALF_UP)

    return CapitalGainResult(
        transaction_id=transaction.transaction_id,
        asset_type=transaction.asset_type,
        purchase_date=transaction.purchase_date,
        sale_date=transaction.sale_date,
        holding_period_days=(transaction.sale_date - transaction.purchase_date).days,
        is_long_term=long_term,
        purchase_price=purchase_price,
        sale_price=sale_price,
        expenses=expenses,
        cost_of_acquisition=cost,
        indexation_applied=indexation_applied,
        gain=sale_price - cost - expenses,
    )


def summarize_capital_gains(transactions: Iterable[AssetTransaction]) -> CapitalGainsSummary:
    """
    Aggregate per-transaction results. Losses are totalled separately and do
    not reduce the gain totals (no set-off).
    """
    results = [compute_capital_gain(t) for t in transactions]
    short_gain = long_gain = short_loss = long_loss = ZERO
    for result in results:
        if result.is_long_term:
            if result.gain > 0:
                long_gain += result.gain
            else:
                long_loss += -result.gain
        else:
            if result.gain > 0:
                short_gain += result.gain
            else:
                short_loss += -result.gain

    logger.debug("Summarized %d capital gain transaction(s)", len(results))
    return CapitalGainsSummary(
        transactions=tuple(results),
        short_term_gain=short_gain,
        long_term_gain=long_gain,
        short_term_loss=short_loss,
        long_term_loss=long_loss,
    )


def to_income_input(summary: CapitalGainsSummary) -> CapitalGainsInput:
    """Summary → the capital_gains block of a ComputationRequest."""
    return CapitalGainsInput(short_term=summary.short_term_gain, long_term=summary.long_term_gain)
