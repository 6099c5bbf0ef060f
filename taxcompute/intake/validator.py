"""
validator.py — Request validation for the computation engine.

Two layers, both reporting EVERY violation in one pass as {field, issue} dicts:
  1. Structural: Pydantic errors (wrong types, unknown fields, bad assessment year
     shape) converted by error_details().
  2. Business rules: checks Pydantic cannot express, run after parsing.

Amount *values* are never validation errors here. Malformed or negative amounts
are the normalizer's concern (→ 0, tagged), so OCR noise cannot fail a request.

Raises InputValidationError (errors.py), which main.py maps to a 422 with the
standard error envelope.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from taxcompute.errors import InputValidationError
from taxcompute.intake.normalizer import parse_money_detailed
from taxcompute.intake.schemas import ComputationRequest

logger = logging.getLogger(__name__)


def error_details(errors: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """
    Pydantic error list → [{"field": "incomes.salary", "issue": "..."}].
    The top-level 'body' loc FastAPI adds is dropped.
    """
    details = []
    for error in errors:
        field = ".".join(str(loc) for loc in error.get("loc", ()) if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return details


def validate_business_rules(request: ComputationRequest) -> None:
    """
    Validate a structurally-valid ComputationRequest.

    Rules:
      1. user_id must not be blank
      2. idempotency_key, when given, must not be blank
      3. parents_senior_citizen requires a parents' premium under section_80d_parents.
         Only an absent or zero premium counts; unreadable text is the
         normalizer's concern and is tagged, not rejected.

    Raises:
        InputValidationError: with all violations.
    """
    violations: list[dict[str, Any]] = []

    # ---- 1. user_id ----------------------------------------------------------
    if not request.user_id.strip():
        violations.append({"field": "user_id", "issue": "user_id must not be blank"})

    # ---- 2. idempotency_key --------------------------------------------------
    if request.idempotency_key is not None and not request.idempotency_key.strip():
        violations.append({
            "field": "idempotency_key",
            "issue": "idempotency_key must not be blank when provided",
        })

    # ---- 3. senior parents flag without a premium ----------------------------
    parents_premium = parse_money_detailed(request.deductions.section_80d_parents)
    if request.deductions.parents_senior_citizen and parents_premium.amount == 0 and parents_premium.issue is None:
        violations.append({
            "field": "deductions.parents_senior_citizen",
            "issue": "parents_senior_citizen is set but no section_80d_parents premium was given",
        })

    if violations:
        logger.info("Computation request rejected: %d business-rule violation(s)", len(violations))
        raise InputValidationError(violations)


def parse_request(payload: Mapping[str, Any]) -> ComputationRequest:
    """
    Build and validate a ComputationRequest from a plain dict (non-HTTP callers).
    Raises InputValidationError listing every structural and business-rule problem.
    """
    try:
        request = ComputationRequest.model_validate(payload)
    except ValidationError as exc:
        raise InputValidationError(error_details(exc.errors())) from None
    validate_business_rules(request)
    return request
