"""
Shared httpx client for proxy forwarding.

Pool limits and timeouts come from the environment. The timeouts bound how
long a stalled upstream can hold a request before it becomes a transport
error (and a 502).
"""

import logging
import os

import httpx

logger = logging.getLogger("frontdoor.router.pool")

MAX_CONNECTIONS = int(os.getenv("FRONTDOOR_MAX_CONNECTIONS", "100"))
MAX_KEEPALIVE_CONNECTIONS = int(os.getenv("FRONTDOOR_MAX_KEEPALIVE", "20"))
KEEPALIVE_EXPIRY = float(os.getenv("FRONTDOOR_KEEPALIVE_EXPIRY", "5.0"))  # seconds

CONNECT_TIMEOUT = float(os.getenv("FRONTDOOR_CONNECT_TIMEOUT", "5.0"))
READ_TIMEOUT = float(os.getenv("FRONTDOOR_READ_TIMEOUT", "30.0"))
WRITE_TIMEOUT = float(os.getenv("FRONTDOOR_WRITE_TIMEOUT", "30.0"))
POOL_TIMEOUT = float(os.getenv("FRONTDOOR_POOL_TIMEOUT", "5.0"))


def build_timeout(read_timeout: float | None = None) -> httpx.Timeout:
    return httpx.Timeout(
        connect=CONNECT_TIMEOUT,
        read=read_timeout or READ_TIMEOUT,
        write=WRITE_TIMEOUT,
        pool=POOL_TIMEOUT,
    )


def create_http_client(
    max_connections: int | None = None,
    max_keepalive: int | None = None,
    keepalive_expiry: float | None = None,
    read_timeout: float | None = None,
) -> httpx.AsyncClient:
    """
    Create the pooled AsyncClient used by every proxy rule.

    Redirects are not followed; they are relayed to the caller like any
    other upstream response.
    """
    limits = httpx.Limits(
        max_connections=max_connections or MAX_CONNECTIONS,
        max_keepalive_connections=max_keepalive or MAX_KEEPALIVE_CONNECTIONS,
        keepalive_expiry=keepalive_expiry or KEEPALIVE_EXPIRY,
    )

    logger.debug(
        "Creating HTTP client: max_conn=%d, keepalive=%d, keepalive_expiry=%.1fs",
        limits.max_connections,
        limits.max_keepalive_connections,
        limits.keepalive_expiry,
    )

    return httpx.AsyncClient(
        limits=limits,
        timeout=build_timeout(read_timeout),
        follow_redirects=False,
    )
