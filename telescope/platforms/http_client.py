"""
HTTP infrastructure layer for platform adapters.

Provides:
- RetryConfig: Exponential backoff configuration
- HTTPClient: Async HTTP client with session headers/cookies and
  optional retry

The watcher never retries within a tick, so adapters build their
clients with ``max_retries=0`` unless configured otherwise. This layer
separates HTTP concerns from payload normalization in the adapters.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """
    Exponential backoff configuration for HTTP retries.

    Formula: min(max_backoff, base_delay * 2^attempt) * (1 + random(0, jitter_factor))
    """

    max_retries: int = 0
    max_backoff_seconds: float = 60.0
    base_delay: float = 1.0
    jitter_factor: float = 0.1

    def calculate_backoff(self, attempt: int) -> float:
        """
        Calculate backoff duration for a given retry attempt.

        Args:
            attempt: The retry attempt number (0-indexed)

        Returns:
            Backoff duration in seconds with jitter applied
        """
        delay = self.base_delay * (2**attempt)
        delay = min(delay, self.max_backoff_seconds)
        jitter = delay * self.jitter_factor * random.random()
        return delay + jitter

    def is_retryable_status(self, status_code: int) -> bool:
        """429 and transient 5xx responses are retryable."""
        return status_code in {429, 500, 502, 503, 504}

    def is_retryable_exception(self, exc: Exception) -> bool:
        """Timeouts and connection failures are retryable."""
        return isinstance(
            exc,
            (
                httpx.TimeoutException,
                httpx.ConnectError,
                httpx.ReadError,
            ),
        )


class HTTPClientError(Exception):
    """Base exception for HTTP client errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class RateLimitError(HTTPClientError):
    """Raised when rate limit is hit and all retries exhausted."""

    pass


class HTTPClient:
    """
    Async HTTP client with session headers, cookies and retry logic.

    Example:
        async with HTTPClient(headers={"User-Agent": UA}) as client:
            data = await client.get_json(
                "https://api.live.bilibili.com/xlive/web-room/v1/index/getInfoByRoom",
                params={"room_id": 1},
            )
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        cookies: dict[str, str] | None = None,
    ):
        """
        Initialize HTTP client.

        Args:
            retry_config: Configuration for retry behavior. Uses defaults if None.
            timeout: Request timeout in seconds.
            headers: Headers sent with every request.
            cookies: Cookies sent with every request.
        """
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self._headers = headers or {}
        self._cookies = cookies or {}
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HTTPClient":
        """Enter async context manager, create client."""
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers=self._headers,
            cookies=self._cookies,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager, close client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """
        Perform GET request with retry logic.

        Returns:
            httpx.Response on success

        Raises:
            HTTPClientError: On non-retryable errors or after retries exhausted
            RateLimitError: When rate limited and retries exhausted
        """
        return await self._request_with_retry(
            url=url,
            params=params,
            headers=headers,
        )

    async def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        GET a URL and decode the JSON body.

        Raises:
            HTTPClientError: On request failure or undecodable body
        """
        response = await self.get(url, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise HTTPClientError(
                f"JSON decode error for {url}: {e}",
                status_code=response.status_code,
                response_body=response.text[:500],
            ) from e

    async def _request_with_retry(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """
        Execute a GET request with retry logic.

        Implements exponential backoff with jitter on retryable errors.
        """
        if not self._client:
            raise RuntimeError("HTTPClient must be used as async context manager")

        last_status_code: int | None = None
        last_response_body: str | None = None

        for attempt in range(self.retry_config.max_retries + 1):
            try:
                response = await self._client.get(
                    url,
                    params=params,
                    headers=headers,
                )

                if self.retry_config.is_retryable_status(response.status_code):
                    last_status_code = response.status_code
                    last_response_body = response.text

                    if attempt < self.retry_config.max_retries:
                        backoff = self.retry_config.calculate_backoff(attempt)
                        logger.warning(
                            f"Retryable status {response.status_code} from {url}, "
                            f"attempt {attempt + 1}/{self.retry_config.max_retries + 1}, "
                            f"backing off {backoff:.2f}s"
                        )
                        await asyncio.sleep(backoff)
                        continue

                    if response.status_code == 429:
                        raise RateLimitError(
                            f"Rate limit exceeded for {url} after {attempt + 1} attempts",
                            status_code=response.status_code,
                            response_body=last_response_body,
                        )
                    raise HTTPClientError(
                        f"Request failed with status {response.status_code} after {attempt + 1} attempts",
                        status_code=response.status_code,
                        response_body=last_response_body,
                    )

                if response.status_code >= 400:
                    raise HTTPClientError(
                        f"Request failed with status {response.status_code}",
                        status_code=response.status_code,
                        response_body=response.text,
                    )

                return response

            except (httpx.TimeoutException, httpx.ConnectError, httpx.ReadError) as e:
                if attempt < self.retry_config.max_retries:
                    backoff = self.retry_config.calculate_backoff(attempt)
                    logger.warning(
                        f"Retryable error {type(e).__name__} for {url}, "
                        f"attempt {attempt + 1}/{self.retry_config.max_retries + 1}, "
                        f"backing off {backoff:.2f}s"
                    )
                    await asyncio.sleep(backoff)
                    continue

                raise HTTPClientError(
                    f"Request failed after {attempt + 1} attempts: {e}",
                    status_code=last_status_code,
                ) from e

            except httpx.HTTPError as e:
                raise HTTPClientError(f"Request to {url} failed: {e}") from e

        raise HTTPClientError(
            f"Request failed after {self.retry_config.max_retries + 1} attempts",
            status_code=last_status_code,
            response_body=last_response_body,
        )
