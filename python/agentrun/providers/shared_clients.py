"""
Shared HTTP client for provider adapters.

Adapters that are not given an ``httpx.AsyncClient`` use one shared instance, so
that creating many adapters does not create many connection pools.

Usage:
    from agentrun.providers.shared_clients import get_shared_http_client

    client = await get_shared_http_client()
    response = await client.get("http://localhost:11434/api/tags")
"""

import asyncio
from typing import Optional

import httpx

from ..logs import get_logger

logger = get_logger("adapter")

_shared_http_client: Optional[httpx.AsyncClient] = None
_shared_http_lock = asyncio.Lock()

DEFAULT_CONNECT_TIMEOUT = 10.0
# local models can take minutes to answer on modest hardware
DEFAULT_READ_TIMEOUT = 300.0
DEFAULT_WRITE_TIMEOUT = 30.0
DEFAULT_POOL_TIMEOUT = 10.0

MAX_CONNECTIONS = 100
MAX_KEEPALIVE_CONNECTIONS = 20


def create_timeout(read: float = DEFAULT_READ_TIMEOUT) -> httpx.Timeout:
  return httpx.Timeout(
    connect=DEFAULT_CONNECT_TIMEOUT,
    read=read,
    write=DEFAULT_WRITE_TIMEOUT,
    pool=DEFAULT_POOL_TIMEOUT,
  )


def create_limits() -> httpx.Limits:
  return httpx.Limits(
    max_connections=MAX_CONNECTIONS,
    max_keepalive_connections=MAX_KEEPALIVE_CONNECTIONS,
  )


def create_http_client(read_timeout: float = DEFAULT_READ_TIMEOUT, **kwargs) -> httpx.AsyncClient:
  """Create a new client with the default timeouts and pool limits."""
  return httpx.AsyncClient(timeout=create_timeout(read_timeout), limits=create_limits(), **kwargs)


async def get_shared_http_client() -> httpx.AsyncClient:
  """
  Get the shared client, creating it on first use.

  The client is never closed by adapters; call ``close_shared_http_client`` on shutdown.
  """
  global _shared_http_client

  if _shared_http_client is not None and not _shared_http_client.is_closed:
    return _shared_http_client

  async with _shared_http_lock:
    if _shared_http_client is not None and not _shared_http_client.is_closed:
      return _shared_http_client

    _shared_http_client = create_http_client()
    logger.debug(
      f"Initialized shared HTTP client "
      f"(max_connections={MAX_CONNECTIONS}, max_keepalive={MAX_KEEPALIVE_CONNECTIONS})"
    )
    return _shared_http_client


async def close_shared_http_client() -> None:
  global _shared_http_client

  async with _shared_http_lock:
    if _shared_http_client is not None:
      await _shared_http_client.aclose()
      _shared_http_client = None
