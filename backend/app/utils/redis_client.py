"""Helper to create Redis clients with SSL support for hosted providers."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis

SSL_HOST_SUFFIXES = (".upstash.io",)


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Create a Redis client, upgrading hosted-provider URLs to TLS.

    Args:
        url: Redis connection URL (redis:// or rediss://)
        **kwargs: Additional arguments (decode_responses, socket_connect_timeout, etc.)
    """
    hosted = any(suffix in url for suffix in SSL_HOST_SUFFIXES)
    if hosted and url.startswith("redis://"):
        url = url.replace("redis://", "rediss://", 1)

    if url.startswith("rediss://"):
        # Hosted providers terminate TLS with certificates we do not pin
        kwargs.setdefault("ssl_cert_reqs", ssl.CERT_NONE)

    return Redis.from_url(url, **kwargs)
