"""
main.py — taxcompute FastAPI application entry point.

Start with: uvicorn taxcompute.main:app --reload --port 8000
(run from the repository root)
"""
import logging
import os
import subprocess
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.exceptions import HTTPException as StarletteHTTPException

from taxcompute.config import settings
from taxcompute.errors import (
    ConfigurationError,
    InputValidationError,
    StoreError,
    StoreTimeoutError,
    UnsupportedAssessmentYearError,
)
from taxcompute.evaluator.rules import supported_assessment_years
from taxcompute.intake.validator import error_details

# ---------------------------------------------------------------------------
# Logging — configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan — startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Run Alembic migrations (skipped when run_migrations_on_startup is false)
      2. Initialize Redis connection pool — optional, the run cache is disabled
         when Redis is not configured or unreachable
    Shutdown:
      1. Close Redis pool
    """
    # --- 1. Database: run Alembic migrations ---
    if settings.run_migrations_on_startup:
        package_dir = os.path.dirname(os.path.abspath(__file__))
        result = subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            capture_output=True,
            text=True,
            cwd=package_dir,
        )
        if result.returncode != 0:
            logger.error("Alembic migration failed:\n%s", result.stderr)
            raise RuntimeError(f"Alembic migration failed: {result.stderr}")
        msg = result.stdout.strip() or "No pending migrations"
        logger.info("Alembic: %s", msg)

    # --- 2. Redis: initialize connection pool ---
    app.state.redis = None
    if settings.redis_url:
        from taxcompute.cache import create_redis_pool
        try:
            app.state.redis = await create_redis_pool()
        except (RedisError, OSError) as exc:
            logger.warning("Redis unavailable — run cache disabled: %s", exc.__class__.__name__)

    logger.info(
        "taxcompute v%s starting up (assessment years: %s)",
        settings.app_version, ", ".join(supported_assessment_years()),
    )
    yield

    # --- Shutdown ---
    if app.state.redis is not None:
        await app.state.redis.aclose()
        logger.info("Redis connection pool closed")
    logger.info("taxcompute shutting down")


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="taxcompute API",
    version=settings.app_version,
    description=(
        "Individual income-tax computation engine. Computes liability under the old "
        "and new regimes for a given assessment year and recommends the cheaper one."
    ),
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# ---------------------------------------------------------------------------
# CORS middleware — restricted to frontend origins from settings
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    status_code: int = 500,
) -> JSONResponse:
    """Build a standard {error: {code, message, details}} response."""
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
        }
    }
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Global exception handlers — registered BEFORE routers
# ---------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Converts Pydantic / FastAPI 422 validation errors to standard format.
    Returns ALL field violations in one response.
    """
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=error_details(exc.errors()),
        status_code=422,
    )


@app.exception_handler(InputValidationError)
async def input_validation_handler(
    request: Request, exc: InputValidationError
) -> JSONResponse:
    """Business-rule violations collected by intake/validator.py."""
    return _make_error_response(
        code=exc.code,
        message=str(exc),
        details=exc.details,
        status_code=422,
    )


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(
    request: Request, exc: ConfigurationError
) -> JSONResponse:
    """Unsupported assessment year / missing rule set — raised before any computation."""
    details: list[dict[str, Any]] = []
    if isinstance(exc, UnsupportedAssessmentYearError):
        details.append({
            "field": "assessment_year",
            "issue": f"Supported years: {', '.join(exc.supported)}",
        })
    return _make_error_response(
        code=exc.code,
        message=str(exc),
        details=details,
        status_code=422,
    )


@app.exception_handler(StoreError)
async def store_error_handler(
    request: Request, exc: StoreError
) -> JSONResponse:
    """
    Persistence failures that could not be absorbed (reads such as GET /api/runs,
    deduction records). Computations never get here — they degrade to persisted=false.
    """
    logger.warning("Store error on %s %s: %s", request.method, request.url.path, exc.code)
    status_code = 504 if isinstance(exc, StoreTimeoutError) else 503
    return _make_error_response(
        code=exc.code,
        message=str(exc),
        status_code=status_code,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """
    Converts FastAPI HTTPException to standard error format with semantic code.
    """
    code_map = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        429: "RATE_LIMITED",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(ValueError)
async def value_error_handler(
    request: Request, exc: ValueError
) -> JSONResponse:
    """
    Catches explicit ValueError raises from business logic (e.g. a malformed
    assessment year in a path parameter). Surfaces as 422 VALIDATION_ERROR.
    """
    return _make_error_response(
        code="VALIDATION_ERROR",
        message=str(exc),
        status_code=422,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Catch-all for unexpected errors.
    DEBUG=true  → includes exception type & message in details (dev only).
    DEBUG=false → generic message; full traceback logged server-side only.
    """
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=True,
    )
    if settings.debug:
        details = [{"issue": f"{type(exc).__name__}: {exc}"}]
        message = "An unexpected error occurred (debug details included)"
    else:
        details = []
        message = "An unexpected error occurred"
    return _make_error_response(
        code="INTERNAL_ERROR",
        message=message,
        details=details,
        status_code=500,
    )


# ---------------------------------------------------------------------------
# Health endpoint (no auth required)
# ---------------------------------------------------------------------------
@app.get("/api/health", tags=["System"])
async def health_check() -> dict:
    """Returns service health status and the assessment years the engine supports."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "assessment_years": supported_assessment_years(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from taxcompute.intake.routes import router as intake_router  # noqa: E402
from taxcompute.evaluator.routes import router as evaluator_router  # noqa: E402

app.include_router(intake_router)
app.include_router(evaluator_router)
