"""Shared helpers for publishing job progress to Redis."""

from __future__ import annotations

import json
from datetime import timedelta
from functools import lru_cache
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

from app.core.config import get_settings
from app.utils.redis_client import create_redis_client

PROGRESS_PREFIX = "imports:progress:"
PROGRESS_TTL = timedelta(hours=24)


@lru_cache
def _redis() -> Redis:
    settings = get_settings()
    return create_redis_client(settings.redis_url, decode_responses=True, socket_connect_timeout=2)


def _key(job_id: str) -> str:
    return f"{PROGRESS_PREFIX}{job_id}"


def publish_progress(
    job_id: str,
    processed: int,
    total: int,
    *,
    status: str | None = None,
    message: str | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    """Persist progress snapshots so dashboards can poll them cheaply."""
    progress = processed / total if total else 0.0
    payload = {
        "job_id": job_id,
        "progress": max(0.0, min(progress, 1.0)),
        "processed": processed,
        "total": total,
        "status": status,
        "message": message or f"Processed {processed}/{total or '?'} items",
        "meta": meta or {},
    }
    try:
        _redis().set(
            _key(job_id),
            json.dumps(payload),
            ex=int(PROGRESS_TTL.total_seconds()),
        )
    except RedisError:
        # Redis availability should not break ingestion.
        pass


def fetch_progress(job_id: str) -> dict[str, Any]:
    """Return the latest snapshot, or {} when Redis has none."""
    try:
        raw = _redis().get(_key(job_id))
    except RedisError:
        return {}
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {}
