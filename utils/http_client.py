import asyncio
import logging
from typing import Optional

import aiohttp

from config import HTTP_TIMEOUT_OPEN_METEO

logger = logging.getLogger(__name__)

_client: Optional[aiohttp.ClientSession] = None
_client_lock = asyncio.Lock()


async def get_http_session() -> aiohttp.ClientSession:
    """Return the shared aiohttp session used for upstream weather APIs."""
    global _client
    if _client is not None and not _client.closed:
        return _client
    async with _client_lock:
        if _client is None or _client.closed:
            timeout = aiohttp.ClientTimeout(
                total=HTTP_TIMEOUT_OPEN_METEO,
                connect=min(10, HTTP_TIMEOUT_OPEN_METEO / 3),
            )
            _client = aiohttp.ClientSession(timeout=timeout, headers={"Accept-Encoding": "gzip"})
        return _client


async def close_http_session() -> None:
    global _client
    if _client and not _client.closed:
        await _client.close()
        logger.debug("Upstream HTTP session closed")
    _client = None
