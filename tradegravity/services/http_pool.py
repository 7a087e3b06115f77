"""
HTTP client factory for provider instances.

Each provider owns one ``httpx.AsyncClient`` for its lifetime so connection
pooling and keep-alive are per provider, never shared across providers.
Per-request timeouts are enforced here by the transport; the retry layer
does not add its own.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONNECTIONS = 20
DEFAULT_MAX_KEEPALIVE = 10


def build_timeout(total: float) -> httpx.Timeout:
    """Total request timeout with a connect timeout capped at 10 seconds."""
    total = total if total and total > 0 else 30.0
    return httpx.Timeout(timeout=total, connect=min(10.0, total))


def create_http_client(
    timeout: float,
    user_agent: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create the AsyncClient a provider keeps for its lifetime.

    Args:
        timeout: Total per-request timeout in seconds
        user_agent: Default User-Agent header
        transport: Custom transport (tests pass ``httpx.MockTransport``)

    Returns:
        Configured httpx.AsyncClient
    """
    limits = httpx.Limits(
        max_connections=DEFAULT_MAX_CONNECTIONS,
        max_keepalive_connections=DEFAULT_MAX_KEEPALIVE,
        keepalive_expiry=5.0,
    )
    headers = {"User-Agent": user_agent} if user_agent else None

    kwargs: Dict[str, Any] = {
        "limits": limits,
        "timeout": build_timeout(timeout),
        "headers": headers,
        "follow_redirects": True,
    }
    if transport is not None:
        kwargs["transport"] = transport
    else:
        kwargs["http2"] = True

    client = httpx.AsyncClient(**kwargs)
    logger.debug(f"HTTP client created: timeout={timeout}s, max_connections={DEFAULT_MAX_CONNECTIONS}")
    return client

