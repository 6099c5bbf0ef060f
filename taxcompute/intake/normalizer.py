"""
normalizer.py — Tolerant money parsing and income normalization.

Figures reach the engine from forms, spreadsheets and OCR text, so amounts come
in as numbers or as strings like "₹1,50,000", "Rs. 25,000/-", "INR 1 200.50",
"(5,000)" or "1.234,56". This module turns every one of them into a
non-negative Decimal quantized to paise.

Tolerance rules:
  - None / empty string                 → 0 (absent, not tagged)
  - bool, NaN, Infinity, garbage text   → 0, tagged "<prefix>-unparseable:<field>"
  - negative or accounting "(…)" values → 0, tagged "<prefix>-clamped:<field>"

No exceptions escape from here — a bad field never fails the whole request.
"""
import logging
import math
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, List, NamedTuple, Optional, Tuple

from taxcompute.evaluator.schemas import IncomeProfile, TaxesPaid
from taxcompute.intake.schemas import DeductionInput, IncomeInput, TaxesPaidInput

logger = logging.getLogger(__name__)

PAISE = Decimal("0.01")
ZERO = Decimal("0")

_CURRENCY = re.compile(r"(₹|\$|\bINR\b|\bRs\b\.?)", re.IGNORECASE)
_TRAILING_DASH = re.compile(r"/-\s*$")
_SEPARATORS = re.compile(r"[\s'_]")
_PLAIN_NUMBER = re.compile(r"^\d+(\.\d+)?$")
_COMMA_DECIMAL = re.compile(r"^\d+,\d{1,2}$")

ISSUE_CLAMPED = "clamped"
ISSUE_UNPARSEABLE = "unparseable"


class ParsedAmount(NamedTuple):
    amount: Decimal
    issue: Optional[str] = None     # None, "clamped" or "unparseable"


# ---------------------------------------------------------------------------
# parse_money
# ---------------------------------------------------------------------------

def _quantize(value: Decimal) -> Decimal:
    return value.quantize(PAISE, rounding=ROUND_HALF_UP)


def _from_decimal(value: Decimal) -> ParsedAmount:
    if not value.is_finite():
        return ParsedAmount(ZERO, ISSUE_UNPARSEABLE)
    if value < 0:
        return ParsedAmount(ZERO, ISSUE_CLAMPED)
    return ParsedAmount(_quantize(value))


def _clean_digits(text: str) -> str:
    """
    Resolve grouping vs decimal punctuation.

    Both ',' and '.' present → whichever comes last is the decimal separator.
    Only commas → grouping (Indian or Western), except a single comma followed by
    one or two digits ("25,5") which is a decimal comma.
    Several dots and no comma → dots are grouping ("1.234.567").
    """
    has_comma, has_dot = "," in text, "." in text
    if has_comma and has_dot:
        if text.rfind(",") > text.rfind("."):
            return text.replace(".", "").replace(",", ".")
        return text.replace(",", "")
    if has_comma:
        if _COMMA_DECIMAL.match(text):
            return text.replace(",", ".")
        return text.replace(",", "")
    if text.count(".") > 1:
        return text.replace(".", "")
    return text


def _parse_text(raw: str) -> ParsedAmount:
    text = raw.strip()
    if not text:
        return ParsedAmount(ZERO)

    text = _TRAILING_DASH.sub("", text)
    text = _CURRENCY.sub("", text)
    text = _SEPARATORS.sub("", text)

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative, text = True, text[1:-1]
    if text.startswith("-"):
        negative, text = True, text[1:]
    elif text.startswith("+"):
        text = text[1:]

    text = _clean_digits(text)
    if not _PLAIN_NUMBER.match(text):
        return ParsedAmount(ZERO, ISSUE_UNPARSEABLE)

    if negative and Decimal(text) != 0:
        return ParsedAmount(ZERO, ISSUE_CLAMPED)
    return ParsedAmount(_quantize(Decimal(text)))


def parse_money_detailed(value) -> ParsedAmount:
    """Parse one raw amount; returns the amount plus what (if anything) was corrected."""
    if value is None:
        return ParsedAmount(ZERO)
    # bool is an int subclass, and "true" is not an amount
    if isinstance(value, bool):
        return ParsedAmount(ZERO, ISSUE_UNPARSEABLE)
    if isinstance(value, Decimal):
        return _from_decimal(value)
    if isinstance(value, int):
        return _from_decimal(Decimal(value))
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return ParsedAmount(ZERO, ISSUE_UNPARSEABLE)
        return _from_decimal(Decimal(str(value)))
    if isinstance(value, str):
        try:
            return _parse_text(value)
        except InvalidOperation:
            return ParsedAmount(ZERO, ISSUE_UNPARSEABLE)
    return ParsedAmount(ZERO, ISSUE_UNPARSEABLE)


def parse_money(value) -> Decimal:
    """
    Parse a number or free-form money string into a non-negative Decimal (paise).

    >>> parse_money("₹1,50,000")
    Decimal('150000.00')
    >>> parse_money("Rs. 25,000/-")
    Decimal('25000.00')
    >>> parse_money("1.234,56")
    Decimal('1234.56')
    >>> parse_money("-500")
    Decimal('0')
    """
    return parse_money_detailed(value).amount


def _collect(fields: Dict[str, object], prefix: str) -> Tuple[Dict[str, Decimal], List[str]]:
    amounts: Dict[str, Decimal] = {}
    tags: List[str] = []
    for name, raw in fields.items():
        parsed = parse_money_detailed(raw)
        amounts[name] = parsed.amount
        if parsed.issue is not None:
            tags.append(f"{prefix}-{parsed.issue}:{name}")
    return amounts, tags


# ---------------------------------------------------------------------------
# Request sections
# ---------------------------------------------------------------------------

def normalize_incomes(incomes: IncomeInput) -> IncomeProfile:
    """Build the IncomeProfile. Corrections are recorded in profile.adjustments."""
    amounts, tags = _collect(
        {
            "salary": incomes.salary,
            "interest": incomes.interest,
            "capital_gains.short_term": incomes.capital_gains.short_term,
            "capital_gains.long_term": incomes.capital_gains.long_term,
            "property": incomes.property,
            "virtual_digital_asset": incomes.virtual_digital_asset,
            "other": incomes.other,
            "exempt": incomes.exempt,
        },
        prefix="income",
    )
    if tags:
        logger.debug("Income normalization adjusted %d field(s)", len(tags))

    return IncomeProfile(
        salary=amounts["salary"],
        interest=amounts["interest"],
        short_term_capital_gain=amounts["capital_gains.short_term"],
        long_term_capital_gain=amounts["capital_gains.long_term"],
        house_property=amounts["property"],
        virtual_digital_asset=amounts["virtual_digital_asset"],
        other=amounts["other"],
        exempt=amounts["exempt"],
        adjustments=tuple(tags),
    )


def normalize_deductions(deductions: DeductionInput) -> Tuple[Dict[str, Decimal], List[str]]:
    """Return {field_name: amount} for every money field of DeductionInput, plus tags."""
    raw = deductions.model_dump(exclude={"parents_senior_citizen"})
    return _collect(raw, prefix="deduction")


def normalize_taxes_paid(taxes_paid: TaxesPaidInput) -> Tuple[TaxesPaid, List[str]]:
    amounts, tags = _collect(taxes_paid.model_dump(), prefix="tax-paid")
    return TaxesPaid(**amounts), tags
