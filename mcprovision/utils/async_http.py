"""Async HTTP client utilities."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp

from ..errors import RequestFailed

logger = logging.getLogger(__name__)


class AsyncHTTPClient:
    """Reusable async HTTP client, GET only, wrapping aiohttp errors into RequestFailed."""

    def __init__(self, headers: Optional[Dict[str, str]] = None, timeout: float = 60.0):
        self.default_headers = headers or {}
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def open(self):
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                headers=self.default_headers,
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.timeout, sock_read=self.timeout),
            )

    async def close(self):
        if self.session is not None:
            await self.session.close()
            self.session = None

    @asynccontextmanager
    async def stream(self, url: str, headers: Optional[Dict[str, str]] = None) -> AsyncIterator[aiohttp.ClientResponse]:
        """GET request yielding the response with an unread body."""
        await self.open()
        try:
            async with self.session.get(url, headers=headers) as resp:
                if resp.status >= 400:
                    raise RequestFailed(url, f"HTTP {resp.status} {resp.reason}", resp.status)
                yield resp
        except aiohttp.ClientError as e:
            raise RequestFailed(url, f"{type(e).__name__}: {e}") from e
        except asyncio.TimeoutError as e:
            raise RequestFailed(url, "timed out") from e

    async def get_bytes(self, url: str, headers: Optional[Dict[str, str]] = None) -> bytes:
        """GET request."""
        async with self.stream(url, headers) as resp:
            try:
                return await resp.read()
            except aiohttp.ClientError as e:
                raise RequestFailed(url, f"{type(e).__name__}: {e}") from e

    async def get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Any:
        """GET request decoding a JSON body regardless of the advertised content type."""
        body = await self.get_bytes(url, headers)
        try:
            return json.loads(body)
        except ValueError as e:
            raise RequestFailed(url, f"invalid JSON: {e}") from e
