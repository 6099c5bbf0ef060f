"""
schemas.py — Intake Pydantic v2 data contracts.

Defines:
  - Regime, AgeGroup, Section, AssetType, LossType enums
  - ComputationRequest  (the central request contract — every computation starts here)
  - Section80CRequest / Section80DRequest / OtherDeductionsRequest  (itemised deduction records)
  - TaxesPaidRecordRequest / CarryForwardRequest  (TDS/TCS credits, brought-forward losses)
  - CapitalGainsRequest (asset sale transactions)
  - ErrorDetail, ErrorBody, ErrorResponse  (cross-cutting error envelope)

Money fields are RawAmount: a number OR free-form text ("₹1,50,000", "Rs. 25,000/-").
They are NOT parsed here — the normalizer owns tolerant parsing so malformed OCR
text degrades to 0 instead of failing the request. Only structural shape is
enforced by Pydantic (a list where a number belongs is still a 422).
"""
import re
import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


RawAmount = Union[Decimal, int, float, str, None]

_AY_PATTERN = re.compile(r"^(?:AY\s*)?(\d{4})-(\d{2})$", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Regime(str, Enum):
    old = "old"
    new = "new"


class AgeGroup(str, Enum):
    general = "general"              # below 60
    senior = "senior"                # 60–79
    super_senior = "super_senior"    # 80 and above

    @property
    def is_senior(self) -> bool:
        return self is not AgeGroup.general


class Section(str, Enum):
    """Deduction sections understood by the deduction capper."""
    section_80c = "80C"
    section_80d_self = "80D_SELF"
    section_80d_parents = "80D_PARENTS"
    section_80d_preventive = "80D_PREVENTIVE"
    section_80tta = "80TTA"
    section_80ttb = "80TTB"
    section_80ccd1b = "80CCD1B"
    section_80ccd2 = "80CCD2"
    section_80e = "80E"
    section_80g = "80G"
    section_24b = "24B"
    other = "OTHER"


class LossType(str, Enum):
    short_term_capital = "STCL"
    long_term_capital = "LTCL"
    business = "Business"
    speculative = "Speculative"


class AssetType(str, Enum):
    equity = "equity"
    equity_mutual_fund = "equity_mutual_fund"
    debt_mutual_fund = "debt_mutual_fund"
    gold = "gold"
    real_estate = "real_estate"
    unlisted_shares = "unlisted_shares"
    other = "other"


def normalize_assessment_year(value: str) -> str:
    """'AY 2025-26' / 'ay2025-26' / '2025-26' → '2025-26'. Raises ValueError on bad shape."""
    match = _AY_PATTERN.match(value.strip())
    if not match:
        raise ValueError("assessment_year must look like '2025-26'")
    start, end = match.groups()
    if (int(start) + 1) % 100 != int(end):
        raise ValueError(f"assessment_year '{value}' does not span consecutive years")
    return f"{start}-{end}"


# ---------------------------------------------------------------------------
# ComputationRequest — central request contract
# ---------------------------------------------------------------------------

class CapitalGainsInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    short_term: RawAmount = 0
    long_term: RawAmount = 0


class IncomeInput(BaseModel):
    """Annual income per category, in INR. All optional, default 0."""
    model_config = ConfigDict(extra="forbid")

    salary: RawAmount = 0
    interest: RawAmount = 0
    capital_gains: CapitalGainsInput = Field(default_factory=CapitalGainsInput)
    property: RawAmount = 0
    virtual_digital_asset: RawAmount = 0
    other: RawAmount = 0
    exempt: RawAmount = Field(
        default=0,
        description="Section 10 exemptions (HRA, LTA, …) already included in the figures above.",
    )


class DeductionInput(BaseModel):
    """
    Claimed (uncapped) deductions. The deduction capper applies caps and regime
    eligibility — clients send what was actually paid/invested.
    """
    model_config = ConfigDict(extra="forbid")

    section_80c: RawAmount = 0
    section_80d: RawAmount = Field(default=0, description="Health insurance premium — self, spouse, children.")
    section_80d_parents: RawAmount = 0
    parents_senior_citizen: bool = False
    preventive_health_checkup: RawAmount = 0
    section_80tta: RawAmount = Field(
        default=0,
        description="Savings interest. Treated as 80TTB (all deposit interest) for senior age groups.",
    )
    section_80ccd: RawAmount = Field(default=0, description="Employee NPS contribution, 80CCD(1B).")
    section_80ccd2: RawAmount = Field(default=0, description="Employer NPS contribution — allowed in both regimes.")
    section_80e: RawAmount = 0
    section_80g: RawAmount = 0
    section_24b: RawAmount = 0
    other: RawAmount = 0


class TaxesPaidInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tds: RawAmount = 0
    tcs: RawAmount = 0
    advance_tax: RawAmount = 0
    self_assessment_tax: RawAmount = 0


class ComputationRequest(BaseModel):
    """
    One computation submission for a user and assessment year.

    idempotency_key is optional: when present a retry with the same key returns
    the stored run even if the payload changed; without it, dedup is by canonical
    input hash.

    extra='forbid' ensures unknown fields from client requests cause a 422 error.
    """
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(..., min_length=1, max_length=64)
    assessment_year: str = Field(..., description="e.g. '2025-26'")
    regime: Regime = Regime.new
    age_group: AgeGroup = AgeGroup.general
    compare_regimes: bool = False

    incomes: IncomeInput = Field(default_factory=IncomeInput)
    deductions: DeductionInput = Field(default_factory=DeductionInput)
    taxes_paid: TaxesPaidInput = Field(default_factory=TaxesPaidInput)

    idempotency_key: Optional[str] = Field(default=None, min_length=1, max_length=128)

    @field_validator("assessment_year")
    @classmethod
    def _normalize_year(cls, value: str) -> str:
        return normalize_assessment_year(value)


# ---------------------------------------------------------------------------
# Itemised deduction record requests
# ---------------------------------------------------------------------------

class _DeductionRecordBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(..., min_length=1, max_length=64)
    assessment_year: str
    idempotency_key: Optional[str] = Field(default=None, min_length=1, max_length=128)

    @field_validator("assessment_year")
    @classmethod
    def _normalize_year(cls, value: str) -> str:
        return normalize_assessment_year(value)


class Section80CComponent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal[
        "PPF", "ELSS", "LifeInsurance", "HomeLoanPrincipal",
        "NSC", "ULIP", "TaxSaverFD", "TuitionFees", "EPF", "Other",
    ]
    amount: RawAmount


class Section80CRequest(_DeductionRecordBase):
    components: List[Section80CComponent] = Field(..., min_length=1)


class HealthPremium(BaseModel):
    model_config = ConfigDict(extra="forbid")

    insured: Literal["self", "family", "parents"]
    age_bracket: Literal["below_60", "60_plus"]
    amount: RawAmount


class Section80DRequest(_DeductionRecordBase):
    premiums: List[HealthPremium] = Field(..., min_length=1)
    preventive_checkup: RawAmount = 0


class OtherDeductionEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    section: Literal["80TTA", "80TTB", "80CCD1B", "80E", "80G", "24B", "OTHER"]
    amount: RawAmount
    meta: dict = Field(default_factory=dict)


class OtherDeductionsRequest(_DeductionRecordBase):
    entries: List[OtherDeductionEntry] = Field(..., min_length=1)
    total_income: RawAmount = Field(
        default=0,
        description="Total income used for percentage caps (80G). 0 when unknown.",
    )


class TaxPaidEntry(BaseModel):
    """One TDS or TCS credit, as listed in Form 26AS / AIS."""
    model_config = ConfigDict(extra="forbid")

    source: str = Field(..., min_length=1, max_length=128, description="Deductor/collector name or TAN")
    amount: RawAmount
    form26as_reference: Optional[str] = Field(default=None, max_length=64)


class TaxesPaidRecordRequest(_DeductionRecordBase):
    tds_entries: List[TaxPaidEntry] = Field(default_factory=list)
    tcs_entries: List[TaxPaidEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_has_entries(self) -> "TaxesPaidRecordRequest":
        if not self.tds_entries and not self.tcs_entries:
            raise ValueError("at least one TDS or TCS entry is required")
        return self


class CarriedForwardLoss(BaseModel):
    """A loss from an earlier assessment year that may be set off this year."""
    model_config = ConfigDict(extra="forbid")

    loss_type: LossType
    year_of_loss: str = Field(..., description="Assessment year the loss arose in, e.g. '2021-22'")
    amount: RawAmount
    can_be_set_off: bool = Field(
        default=True,
        description="False when the return for the loss year was not filed on time.",
    )

    @field_validator("year_of_loss")
    @classmethod
    def _normalize_year(cls, value: str) -> str:
        return normalize_assessment_year(value)


class CarryForwardRequest(_DeductionRecordBase):
    losses: List[CarriedForwardLoss] = Field(..., min_length=1)
    carry_forward_years: Optional[int] = Field(
        default=None,
        ge=1,
        le=8,
        description="Override the statutory set-off window (8 years, 4 for speculative losses).",
    )

    @model_validator(mode="after")
    def validate_losses_precede_year(self) -> "CarryForwardRequest":
        """Only losses of earlier assessment years can be carried forward."""
        late = sorted({loss.year_of_loss for loss in self.losses if loss.year_of_loss >= self.assessment_year})
        if late:
            raise ValueError(
                f"losses from {', '.join(late)} are not earlier than assessment_year {self.assessment_year}"
            )
        return self


# ---------------------------------------------------------------------------
# Capital gains
# ---------------------------------------------------------------------------

class AssetTransaction(BaseModel):
    """A single purchase → sale of a capital asset."""
    model_config = ConfigDict(extra="forbid")

    transaction_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    asset_type: AssetType = AssetType.other
    purchase_date: date
    sale_date: date
    purchase_price: RawAmount
    sale_price: RawAmount
    expenses: RawAmount = 0
    indexation: bool = False

    @model_validator(mode="after")
    def validate_sale_after_purchase(self) -> "AssetTransaction":
        """An asset cannot be sold before it was bought."""
        if self.sale_date < self.purchase_date:
            raise ValueError(
                f"sale_date ({self.sale_date.isoformat()}) cannot be before "
                f"purchase_date ({self.purchase_date.isoformat()})"
            )
        return self


class CapitalGainsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    transactions: List[AssetTransaction] = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Error response models — used by main.py exception handlers (cross-cutting)
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single field-level validation or business-rule error."""
    model_config = ConfigDict(extra="forbid")

    field: Optional[str] = None   # Dot-notation field path, e.g. "incomes.salary"
    issue: str                     # Human-readable description of the problem


class ErrorBody(BaseModel):
    """Error envelope body."""
    model_config = ConfigDict(extra="forbid")

    code: str                                      # VALIDATION_ERROR, NOT_FOUND, etc.
    message: str                                   # High-level error description
    details: List[ErrorDetail] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """
    Standard error response format for all endpoints.

    Structure: {"error": {"code": "...", "message": "...", "details": [...]}}
    """
    model_config = ConfigDict(extra="forbid")

    error: ErrorBody


__all__ = [
    "RawAmount",
    "Regime",
    "AgeGroup",
    "Section",
    "AssetType",
    "LossType",
    "normalize_assessment_year",
    "CapitalGainsInput",
    "IncomeInput",
    "DeductionInput",
    "TaxesPaidInput",
    "ComputationRequest",
    "Section80CComponent",
    "Section80CRequest",
    "HealthPremium",
    "Section80DRequest",
    "OtherDeductionEntry",
    "OtherDeductionsRequest",
    "TaxPaidEntry",
    "TaxesPaidRecordRequest",
    "CarriedForwardLoss",
    "CarryForwardRequest",
    "AssetTransaction",
    "CapitalGainsRequest",
    "ErrorDetail",
    "ErrorBody",
    "ErrorResponse",
]
