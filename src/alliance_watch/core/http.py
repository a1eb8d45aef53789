"""
Shared HTTP client infrastructure for the ESI and Discord integrations.

Provides BaseApiClient with rate limiting and error translation. Retries are
not done here: every call site wraps requests in a RetryPolicy so fetch,
persist and notify share one backoff model.

Usage:
    class MyClient(BaseApiClient):
        BASE_URL = "https://api.example.com"

        def __init__(self, token: str):
            super().__init__(
                headers={"Authorization": f"Bearer {token}"},
                requests_per_minute=60,
            )

        async def get_data(self) -> dict:
            return await self._get("/data")
"""

import asyncio
import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# ESI answers 420 when the per-IP error budget is exhausted.
ESI_ERROR_LIMITED = 420


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ExternalAPIError(Exception):
    """Base exception for external API errors."""

    def __init__(
        self,
        message: str,
        code: str = "EXTERNAL_API_ERROR",
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.retry_after: float | None = None

    @property
    def retryable(self) -> bool:
        """Network failures, 5xx and rate limiting are worth another attempt."""
        if self.status_code is None:
            return True
        return self.status_code >= 500 or self.status_code in (429, ESI_ERROR_LIMITED)


class RateLimitError(ExternalAPIError):
    """Exception raised when rate limit is exceeded."""

    def __init__(self, message: str, retry_after: float = 60, status_code: int = 429):
        super().__init__(message, code="RATE_LIMITED", status_code=status_code)
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------

class RateLimiter:
    """Simple token bucket rate limiter for async API calls."""

    def __init__(self, requests_per_minute: int = 600):
        self.delay = 60.0 / requests_per_minute
        self._last_request = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until we can make a request."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request
            if elapsed < self.delay:
                await asyncio.sleep(self.delay - elapsed)
            self._last_request = time.monotonic()


# ---------------------------------------------------------------------------
# Base client
# ---------------------------------------------------------------------------

class BaseApiClient:
    """
    Async HTTP client base with rate limiting and error translation.

    Subclasses set BASE_URL, configure auth, and add domain-specific methods.
    Use as an async context manager:

        async with EsiClient() as esi:
            ids = await esi.get_alliance_corporations(99010468)

    Or with lazy initialisation (for long-lived services):

        client = EsiClient()
        ids = await client.get_alliance_corporations(99010468)
        await client.close()
    """

    BASE_URL: str = ""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        requests_per_minute: int = 600,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = (base_url or self.BASE_URL).rstrip("/")
        self._default_headers = headers or {}
        self._default_params = params or {}
        self._rate_limiter = RateLimiter(requests_per_minute)
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # -- Lifecycle -----------------------------------------------------------

    async def __aenter__(self) -> "BaseApiClient":
        self._client = self._build_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        """Return the HTTP client, lazily creating it if needed."""
        if self._client is None or self._client.is_closed:
            self._client = self._build_client()
        return self._client

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # -- HTTP methods --------------------------------------------------------

    async def _get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Make a GET request with rate limiting."""
        return await self._request("GET", path, params=params, headers=headers)

    async def _post(
        self,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Make a POST request with rate limiting."""
        return await self._request("POST", path, params=params, json=json, headers=headers)

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """
        Make a single HTTP request and decode the JSON body.

        Raises:
            RateLimitError: If the API answers 429 (or ESI's 420)
            ExternalAPIError: On any other HTTP, transport or decoding failure
        """
        merged_params = {**self._default_params, **(params or {})}
        request_headers = {**self._default_headers, **(headers or {})}

        await self._rate_limiter.acquire()
        try:
            response = await self.client.request(
                method=method,
                url=path,
                params=merged_params,
                json=json,
                headers=request_headers,
            )
        except httpx.TimeoutException as e:
            raise ExternalAPIError(f"Request timed out: {e}", code="TIMEOUT") from e
        except httpx.RequestError as e:
            raise ExternalAPIError(f"Request failed: {e}") from e

        if response.status_code in (429, ESI_ERROR_LIMITED):
            retry_after = _retry_after(response)
            logger.warning(
                f"Rate limited by {self._base_url} ({response.status_code}), "
                f"retry after {retry_after}s"
            )
            raise RateLimitError(
                f"API rate limit exceeded. Try again in {retry_after} seconds.",
                retry_after=retry_after,
                status_code=response.status_code,
            )

        if response.is_error:
            raise ExternalAPIError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise ExternalAPIError(
                f"Malformed JSON from {path}: {e}",
                code="MALFORMED_RESPONSE",
            ) from e


def _retry_after(response: httpx.Response) -> float:
    """Read Retry-After (Discord, generic) or ESI's error-limit reset header."""
    for header in ("retry-after", "x-esi-error-limit-reset"):
        value = response.headers.get(header)
        if value:
            try:
                return float(value)
            except ValueError:
                continue
    return 60.0
