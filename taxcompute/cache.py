"""
cache.py — Redis read-through cache for computation runs.

Namespace conventions:
  run:{user_id}:{assessment_year}:{input_hash}  → stored run payload   TTL 24h

Design:
  - Uses redis.asyncio (async client, part of redis-py 5.x)
  - Pool created once in lifespan, stored on app.state.redis
  - Helper functions take the client as a param — no module-level global state
  - The database stays the source of truth; a cache miss or failure only costs a query
  - Logs only key components (user_id, hash prefix) — never amounts
"""
import json
import logging
from typing import Optional

import redis.asyncio as aioredis

from taxcompute.config import settings
from taxcompute.evaluator.schemas import ComputationResponse

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key prefix constants
# ---------------------------------------------------------------------------
RUN_PREFIX = "run"


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------

def make_run_key(user_id: str, assessment_year: str, input_hash: str) -> str:
    """Build Redis key for a stored run: run:{user_id}:{assessment_year}:{input_hash}"""
    return f"{RUN_PREFIX}:{user_id}:{assessment_year}:{input_hash}"


# ---------------------------------------------------------------------------
# Pool factory — called once in lifespan
# ---------------------------------------------------------------------------

async def create_redis_pool() -> aioredis.Redis:
    """
    Create and return an async Redis connection pool.
    Verifies connectivity with PING before returning.
    """
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    await client.ping()
    logger.info("Redis connection pool established")
    return client


# ---------------------------------------------------------------------------
# Run cache helpers
# ---------------------------------------------------------------------------

async def get_cached_run(
    client: aioredis.Redis, user_id: str, assessment_year: str, input_hash: str
) -> Optional[ComputationResponse]:
    """
    Look up a stored run. Returns None on miss.
    The returned response is marked cached=True.
    """
    key = make_run_key(user_id, assessment_year, input_hash)
    raw = await client.get(key)
    if raw is None:
        return None
    logger.info("Run cache hit user_id=%s hash=%s", user_id, input_hash[:12])
    response = ComputationResponse.model_validate(json.loads(raw))
    return response.model_copy(update={"cached": True, "warnings": []})


async def set_cached_run(client: aioredis.Redis, response: ComputationResponse) -> None:
    """Store a persisted run with TTL settings.run_cache_ttl_seconds. Unpersisted runs are not cached."""
    if response.run_id is None:
        return
    key = make_run_key(response.user_id, response.assessment_year, response.input_hash)
    ttl = settings.run_cache_ttl_seconds
    await client.setex(key, ttl, response.model_dump_json())
    logger.info("Run cached run_id=%s ttl=%ds", response.run_id, ttl)
