"""Simple health and readiness endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import get_settings
from app.db.session import get_engine
from app.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])

SERVICE_NAME = "catalog-import-queue"


@router.get("/live", summary="Liveness probe")
async def live() -> dict[str, str]:
    """Indicates API process is running."""
    return {"status": "ok", "service": SERVICE_NAME}


def check_database() -> dict[str, str]:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return {"status": "unhealthy", "message": f"Database connection failed: {str(e)}"}
    return {"status": "healthy", "message": "Database connection successful"}


def check_redis() -> dict[str, str]:
    settings = get_settings()
    try:
        client = create_redis_client(settings.redis_url, decode_responses=True, socket_connect_timeout=2)
        try:
            client.ping()
        finally:
            client.close()
    except RedisError as e:
        logger.warning(f"Redis health check failed: {e}")
        return {"status": "unhealthy", "message": f"Redis connection failed: {str(e)}"}
    return {"status": "healthy", "message": "Redis connection successful"}


@router.get("/ready", summary="Readiness probe")
def ready() -> dict[str, Any]:
    """Check the job database and the Redis progress store.

    Only the database gates readiness; without Redis, progress snapshots
    are skipped but jobs still run.
    """
    checks: dict[str, Any] = {
        "status": "ok",
        "service": SERVICE_NAME,
        "checks": {
            "database": check_database(),
            "redis": check_redis(),
        },
    }

    if checks["checks"]["database"]["status"] != "healthy":
        checks["status"] = "unhealthy"
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=checks,
        )

    return checks
