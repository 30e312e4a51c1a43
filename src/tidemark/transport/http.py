"""HTTP transport implementation using aiohttp"""

import asyncio
import json
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote, urlsplit

import aiohttp

from .base import RemoteTransport, TransportResponse, NO_CONNECTION
from ..utils.config import TransportConfig
from ..utils.errors import ErrorContext, TransportError
from ..utils.logging import get_logger

logger = get_logger("tidemark.transport.http")

SINCE_PLACEHOLDER = "{since}"


class HTTPTransport(RemoteTransport):
    """
    GET-style incremental reads and POST-style record submission over HTTP.
    """

    def __init__(self, base_url: Optional[str] = None,
                 headers: Optional[Dict[str, str]] = None, name: str = None,
                 timeout: float = 30.0, since_param: str = "after"):
        super().__init__(name)
        if base_url:
            parts = urlsplit(base_url)
            if parts.scheme not in ("http", "https") or not parts.netloc:
                raise TransportError(
                    f"Base URL must be an absolute http(s) URL, got {base_url!r}",
                    context=ErrorContext(
                        component="transport",
                        operation="init",
                        metadata={"base_url": base_url}
                    )
                )
        self.base_url = base_url.rstrip('/') if base_url else None
        self.headers = headers or {}
        self.timeout = timeout
        self.since_param = since_param
        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_config(cls, config: TransportConfig) -> "HTTPTransport":
        return cls(
            base_url=config.base_url,
            headers=dict(config.headers),
            timeout=config.timeout,
            since_param=config.since_param,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout_config = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(
                headers=self.headers,
                timeout=timeout_config
            )
        return self._session

    def resolve(self, endpoint: str) -> str:
        """Absolute URL for an endpoint, relative ones joined to ``base_url``."""
        if endpoint.startswith(("http://", "https://")) or not self.base_url:
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def read_url(self, endpoint: str, since: str) -> Tuple[str, Optional[Dict[str, str]]]:
        """URL and query parameters for a pull starting at ``since``."""
        url = self.resolve(endpoint)
        if SINCE_PLACEHOLDER in url:
            return url.replace(SINCE_PLACEHOLDER, quote(since, safe='')), None
        if url.endswith("="):
            return url + quote(since, safe=''), None
        return url, {self.since_param: since}

    async def fetch(self, url: str, since: str) -> TransportResponse:
        """GET records changed since ``since``"""
        self._stats["fetches"] += 1
        target, params = self.read_url(url, since)

        try:
            session = await self._get_session()
            async with session.get(target, params=params) as response:
                status = response.status
                text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._stats["errors"] += 1
            logger.warning("fetch_failed", url=target, error=str(e), error_type=type(e).__name__)
            return TransportResponse(status=NO_CONNECTION, data=None)

        if not 200 <= status < 300:
            logger.warning("fetch_rejected", url=target, status=status)
            return TransportResponse(status=status, data=[])

        return TransportResponse(status=status, data=_decode(text))

    async def submit(self, url: str, payload: Dict[str, Any]) -> int:
        """POST one record and return the response status"""
        self._stats["submits"] += 1
        target = self.resolve(url)

        try:
            session = await self._get_session()
            async with session.post(target, json=payload) as response:
                await response.read()
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._stats["errors"] += 1
            logger.warning("submit_failed", url=target, error=str(e), error_type=type(e).__name__)
            return NO_CONNECTION

        logger.debug("submit_completed", url=target, status=status)
        return status

    async def close(self) -> None:
        """Close HTTP session"""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None


def _decode(text: str) -> Any:
    if not text:
        return []
    try:
        return json.loads(text)
    except ValueError:
        return text


__all__ = ['HTTPTransport']
