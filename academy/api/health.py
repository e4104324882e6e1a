"""Liveness and readiness probes.

/health  the process answers; never touches a dependency.
/ready   database and Redis answer within the readiness deadline.
         An unconfigured dependency counts as ready (in-memory fallback).
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from academy.core.config import SETTINGS
from academy.core.readiness import gather_readiness
from academy.db.engine import engine, ping_database
from academy.db.redis import ping_redis, redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "database": "configured" if engine is not None else "not_configured",
        "redis": "configured" if redis_pool is not None else "not_configured",
    }


@router.get("/ready")
async def ready() -> JSONResponse:
    report = await gather_readiness(
        {"database": ping_database, "redis": ping_redis},
        SETTINGS.readiness_deadline_seconds,
    )
    return JSONResponse(
        {"ready": report.is_ready, "checks": report.states()},
        status_code=200 if report.is_ready else 503,
    )
