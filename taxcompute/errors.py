"""
errors.py — domain exception hierarchy.

Three families, each translated to the standard error envelope by main.py:
  - ConfigurationError    → rule data missing for the requested year/regime (fail fast)
  - InputValidationError  → structural / field-level request problems (all listed at once)
  - StoreError            → persistence problems (never hide an already computed result)
"""
from __future__ import annotations

from typing import Any, Optional


class TaxComputeError(Exception):
    """Base class for every error raised by taxcompute."""

    code = "TAX_COMPUTE_ERROR"


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------

class ConfigurationError(TaxComputeError):
    code = "CONFIGURATION_ERROR"


class UnsupportedAssessmentYearError(ConfigurationError):
    code = "UNSUPPORTED_ASSESSMENT_YEAR"

    def __init__(self, assessment_year: str, supported: list[str]) -> None:
        self.assessment_year = assessment_year
        self.supported = supported
        super().__init__(
            f"Unsupported assessment year '{assessment_year}'. "
            f"Supported years: {', '.join(supported)}"
        )


class RuleSetNotFoundError(ConfigurationError):
    code = "RULE_SET_NOT_FOUND"

    def __init__(self, assessment_year: str, regime: str) -> None:
        self.assessment_year = assessment_year
        self.regime = regime
        super().__init__(f"No rule set for AY {assessment_year} regime '{regime}'")


# ---------------------------------------------------------------------------
# Input validation errors
# ---------------------------------------------------------------------------

class InputValidationError(TaxComputeError):
    """
    Carries every field-level violation found in one pass.
    details: list of {"field": str | None, "issue": str} dicts.
    """
    code = "VALIDATION_ERROR"

    def __init__(self, details: list[dict[str, Any]], message: str = "Request validation failed") -> None:
        self.details = details
        super().__init__(message)


# ---------------------------------------------------------------------------
# Persistence errors
# ---------------------------------------------------------------------------

class StoreError(TaxComputeError):
    code = "STORE_ERROR"


class StoreTimeoutError(StoreError):
    code = "STORE_TIMEOUT"

    def __init__(self, operation: str, timeout: Optional[float] = None) -> None:
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"Store operation '{operation}' timed out after {timeout}s")
