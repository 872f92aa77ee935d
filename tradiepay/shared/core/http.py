"""
Async HTTP Client Shared Infrastructure

A single httpx.AsyncClient is shared by the FastAPI lifespan and the
background notification tasks to reuse connection pools.
"""

from typing import Optional
import httpx
import structlog

logger = structlog.get_logger()

_client: Optional[httpx.AsyncClient] = None


def _build_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(10.0, connect=5.0),
        limits=httpx.Limits(
            max_connections=100,
            max_keepalive_connections=20,
            keepalive_expiry=30.0,
        ),
        headers={"User-Agent": "TradiePay-Webhooks/0.1"},
    )


def get_http_client() -> httpx.AsyncClient:
    """Returns the shared httpx.AsyncClient, creating it lazily if needed."""
    global _client
    if _client is None:
        logger.warning(
            "http_client_lazy_initialized",
            msg="Client was not pre-initialized",
        )
        _client = _build_client()
    return _client


async def init_http_client() -> None:
    """Initializes the shared httpx.AsyncClient at startup."""
    global _client
    if _client is not None:
        logger.warning("http_client_already_initialized")
        return
    _client = _build_client()
    logger.info("http_client_initialized")


async def close_http_client() -> None:
    """Gracefully shuts down the shared client, flushing its connection pool."""
    global _client
    if _client is None:
        return
    await _client.aclose()
    _client = None
    logger.info("http_client_closed")
