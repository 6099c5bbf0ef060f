"""
Request validation: structural errors and business rules, all reported at once.
"""
import pytest

from taxcompute.errors import InputValidationError
from taxcompute.intake.validator import parse_request


def test_parse_request_normalizes_year() -> None:
    request = parse_request({"user_id": "u1", "assessment_year": "AY 2026-27"})
    assert request.assessment_year == "2026-27"
    assert request.regime.value == "new"


def test_parse_request_lists_every_structural_error() -> None:
    with pytest.raises(InputValidationError) as exc_info:
        parse_request({
            "assessment_year": "2025-27",
            "regime": "flat",
            "incomes": {"salary": {"amount": 1}},
        })
    fields = {detail["field"] for detail in exc_info.value.details}
    assert {"user_id", "assessment_year", "regime"} <= fields
    assert any(field.startswith("incomes.salary") for field in fields)


def test_unknown_fields_rejected() -> None:
    with pytest.raises(InputValidationError) as exc_info:
        parse_request({"user_id": "u1", "assessment_year": "2025-26", "deductions": {"section_80x": 1}})
    assert exc_info.value.details[0]["field"] == "deductions.section_80x"


def test_negative_amounts_are_not_validation_errors() -> None:
    request = parse_request({
        "user_id": "u1",
        "assessment_year": "2025-26",
        "incomes": {"salary": -100, "interest": "abc"},
    })
    assert request.incomes.salary == -100


def test_blank_idempotency_key_rejected() -> None:
    with pytest.raises(InputValidationError) as exc_info:
        parse_request({"user_id": "u1", "assessment_year": "2025-26", "idempotency_key": "  "})
    assert exc_info.value.details == [{
        "field": "idempotency_key",
        "issue": "idempotency_key must not be blank when provided",
    }]


def test_senior_parents_flag_with_premium_accepted() -> None:
    request = parse_request({
        "user_id": "u1",
        "assessment_year": "2025-26",
        "deductions": {"section_80d_parents": "40,000", "parents_senior_citizen": True},
    })
    assert request.deductions.parents_senior_citizen is True


def test_senior_parents_flag_without_premium_rejected() -> None:
    with pytest.raises(InputValidationError) as exc_info:
        parse_request({
            "user_id": "u1",
            "assessment_year": "2025-26",
            "deductions": {"section_80d_parents": "", "parents_senior_citizen": True},
        })
    assert exc_info.value.details[0]["field"] == "deductions.parents_senior_citizen"


@pytest.mark.parametrize("premium", ["Rs ??? (ocr)", "-40,000"], ids=["unreadable", "negative"])
def test_senior_parents_flag_with_unreadable_premium_accepted(premium: str) -> None:
    """A premium that fails to parse is tagged downstream, never a rejection."""
    request = parse_request({
        "user_id": "u1",
        "assessment_year": "2025-26",
        "deductions": {"section_80d_parents": premium, "parents_senior_citizen": True},
    })
    assert request.deductions.section_80d_parents == premium
