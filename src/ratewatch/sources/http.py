"""Shared aiohttp session for the REST and HTML upstreams.

Normalizes every transport failure (connection errors, timeouts, HTTP error
statuses, undecodable JSON) into UpstreamError so adapters only have to
deal with payload shape.
"""

import asyncio
from typing import Any

import aiohttp

from ratewatch.config import HttpSettings
from ratewatch.exceptions import DataIntegrityError, UpstreamError
from ratewatch.logging import get_logger

logger = get_logger(__name__)


class HttpClient:
    """Owns one aiohttp.ClientSession for the process lifetime.

    Usage:
        http = HttpClient(settings.http)
        await http.connect()
        try:
            data = await http.get_json("coingecko", url)
        finally:
            await http.close()
    """

    def __init__(self, settings: HttpSettings) -> None:
        self._settings = settings
        self._session: aiohttp.ClientSession | None = None

    @property
    def session(self) -> aiohttp.ClientSession:
        """Access the underlying session.

        Raises RuntimeError if not connected.
        """
        if self._session is None:
            raise RuntimeError("HTTP client not connected. Call connect() first.")
        return self._session

    async def connect(self) -> None:
        """Open the shared session."""
        if self._session is not None:
            return
        self._session = aiohttp.ClientSession(
            headers={"User-Agent": self._settings.user_agent},
            timeout=aiohttp.ClientTimeout(total=self._settings.timeout_seconds),
        )
        logger.info("http_client_connected", timeout=self._settings.timeout_seconds)

    async def close(self) -> None:
        """Close the session if open."""
        if self._session is not None:
            await self._session.close()
            self._session = None
            logger.info("http_client_closed")

    async def get_text(
        self,
        source: str,
        url: str,
        *,
        params: dict | None = None,
        verify_ssl: bool | None = None,
    ) -> str:
        """GET a page and return its body as text."""
        return await self._request(
            source, "GET", url, params=params, verify_ssl=verify_ssl, as_json=False
        )

    async def get_json(
        self,
        source: str,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> Any:
        """GET a JSON document."""
        return await self._request(source, "GET", url, params=params, headers=headers)

    async def post_json(
        self,
        source: str,
        url: str,
        payload: Any,
        *,
        headers: dict | None = None,
        timeout: float | None = None,
    ) -> Any:
        """POST a JSON body and decode the JSON response."""
        return await self._request(
            source, "POST", url, json=payload, headers=headers, timeout=timeout
        )

    async def _request(
        self,
        source: str,
        method: str,
        url: str,
        *,
        params: dict | None = None,
        json: Any = None,
        headers: dict | None = None,
        verify_ssl: bool | None = None,
        timeout: float | None = None,
        as_json: bool = True,
    ) -> Any:
        kwargs: dict[str, Any] = {"params": params, "json": json, "headers": headers}
        verify = self._settings.verify_ssl if verify_ssl is None else verify_ssl
        if not verify:
            kwargs["ssl"] = False
        if timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)

        try:
            async with self.session.request(method, url, **kwargs) as response:
                if response.status >= 400:
                    raise UpstreamError(source, f"HTTP {response.status} from {url}")
                if not as_json:
                    return await response.text()
                try:
                    return await response.json(content_type=None)
                except ValueError as exc:
                    raise DataIntegrityError(source, "response is not valid JSON") from exc
        except asyncio.TimeoutError as exc:
            raise UpstreamError(source, f"request to {url} timed out") from exc
        except aiohttp.ClientError as exc:
            raise UpstreamError(source, f"{type(exc).__name__}: {exc}") from exc
