"""
REST Client Module
==================

Async JSON transport for the exchange API with:
- Concurrency limiting (Semaphore)
- Minimum interval between requests (rate limiting)
- Bounded total timeout per request
- Typed failures (see ``spreadbot.errors``)

The client makes exactly one HTTP request per call and never retries.
Retry policy belongs to the caller.

Usage:
    async with RestClient("https://api.independentreserve.com", name="ir") as client:
        data = await client.get_json("/Public/GetOrderBook", params={...})
"""

import asyncio
import json
import logging
from decimal import Decimal
from typing import Any, Optional, Union

import aiohttp

from spreadbot.errors import AuthError, ProtocolError, RateLimitedError, TransportError
from spreadbot.utils_time import now_ms

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SEC = 10

RATE_LIMIT_STATUS_CODES = {429, 418}
AUTH_STATUS_CODES = {401, 403}

# Longest body excerpt carried in error messages
ERROR_BODY_PREVIEW = 200


def decode_json(body: Union[bytes, str]) -> Any:
    """
    Decode a JSON body with numbers as Decimal.

    Raises:
        ProtocolError: If the body is not UTF-8 or not valid JSON.
    """
    try:
        text = body.decode("utf-8") if isinstance(body, bytes) else body
        return json.loads(text, parse_float=Decimal)
    except ValueError as e:
        raise ProtocolError(f"invalid JSON body: {e}") from e


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a Retry-After header; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class RestClient:
    """
    Async JSON REST client with rate limiting and error classification.

    Status mapping:
        2xx          -> decoded JSON
        429, 418     -> RateLimitedError
        401, 403     -> AuthError
        5xx          -> TransportError
        other 4xx    -> ProtocolError (body excerpt in message)
    Timeouts and aiohttp.ClientError map to TransportError.

    Args:
        base_url: Base URL for requests
        name: Client name for logging
        max_concurrency: Maximum concurrent requests (default: 2)
        min_interval_ms: Minimum milliseconds between requests (default: 1000)
        timeout_sec: Total timeout per request (default: 10)
    """

    def __init__(
        self,
        base_url: str,
        name: str,
        max_concurrency: int = 2,
        min_interval_ms: int = 1000,
        timeout_sec: float = REQUEST_TIMEOUT_SEC,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.name = name
        self.max_concurrency = max_concurrency
        self.min_interval_ms = min_interval_ms
        self.timeout_sec = timeout_sec

        self._semaphore = asyncio.Semaphore(max_concurrency)

        self._rate_lock = asyncio.Lock()
        self._last_request_ts_ms: int = 0

        # Created lazily inside the running loop
        self._session: aiohttp.ClientSession | None = None

        self.requests_total = 0
        self.errors_total = 0

        logger.info(
            "rest_client_initialized",
            extra={
                "rest_name": self.name,
                "base_url": self.base_url,
                "max_concurrency": self.max_concurrency,
                "min_interval_ms": self.min_interval_ms,
                "timeout_sec": self.timeout_sec,
            },
        )

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_sec)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"Accept": "application/json"},
            )
        return self._session

    async def close(self) -> None:
        """Close the client session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
            logger.info("rest_client_closed", extra={"rest_name": self.name})

    async def _wait_for_rate_limit(self) -> None:
        """Wait if minimum interval hasn't passed since last request."""
        async with self._rate_lock:
            elapsed = now_ms() - self._last_request_ts_ms
            if elapsed < self.min_interval_ms:
                await asyncio.sleep((self.min_interval_ms - elapsed) / 1000.0)
            self._last_request_ts_ms = now_ms()

    async def get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        """
        GET ``path`` and return the decoded JSON body.

        Raises:
            FetchError subclass on any failure.
        """
        return await self._request("GET", path, params=params)

    async def post_json(self, path: str, payload: dict[str, Any]) -> Any:
        """
        POST ``payload`` as JSON to ``path`` and return the decoded body.

        Raises:
            FetchError subclass on any failure.
        """
        return await self._request("POST", path, payload=payload)

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> Any:
        url = self.url_for(path)

        async with self._semaphore:
            await self._wait_for_rate_limit()
            start_ts = now_ms()
            self.requests_total += 1

            try:
                session = await self._get_session()
                async with session.request(method, url, params=params, json=payload) as response:
                    status = response.status
                    body = await response.read()
                    elapsed_ms = now_ms() - start_ts

                    logger.debug(
                        "rest_request",
                        extra={
                            "rest_name": self.name,
                            "method": method,
                            "path": path,
                            "status": status,
                            "elapsed_ms": elapsed_ms,
                        },
                    )

                    if 200 <= status < 300:
                        return decode_json(body)

                    self.errors_total += 1
                    self._raise_for_status(
                        status, body.decode("utf-8", "replace"), response.headers.get("Retry-After")
                    )

            except asyncio.TimeoutError as e:
                self.errors_total += 1
                logger.warning(
                    "rest_request_timeout",
                    extra={
                        "rest_name": self.name,
                        "path": path,
                        "elapsed_ms": now_ms() - start_ts,
                    },
                )
                raise TransportError(f"{method} {path} timed out after {self.timeout_sec}s") from e

            except aiohttp.ClientError as e:
                self.errors_total += 1
                logger.warning(
                    "rest_request_error",
                    extra={
                        "rest_name": self.name,
                        "path": path,
                        "error": str(e),
                        "error_type": type(e).__name__,
                        "elapsed_ms": now_ms() - start_ts,
                    },
                )
                raise TransportError(f"{method} {path} failed: {e}") from e

    def _raise_for_status(self, status: int, text: str, retry_after: Optional[str]) -> None:
        preview = text[:ERROR_BODY_PREVIEW]

        if status in RATE_LIMIT_STATUS_CODES:
            raise RateLimitedError(
                f"HTTP {status}: rate limited",
                status=status,
                retry_after=parse_retry_after(retry_after),
            )
        if status in AUTH_STATUS_CODES:
            raise AuthError(f"HTTP {status}: {preview}", status=status)
        if status >= 500:
            raise TransportError(f"HTTP {status}: server error", status=status)
        raise ProtocolError(f"HTTP {status}: {preview}", status=status)

    async def __aenter__(self) -> "RestClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
