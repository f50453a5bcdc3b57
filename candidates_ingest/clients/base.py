"""
Base API client with 429 backoff, response validation and call accounting.
All source-specific clients inherit from this class.
"""
import time
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, Optional

import httpx
import structlog
from pydantic import TypeAdapter
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from candidates_ingest.config import Settings, get_settings
from candidates_ingest.errors import RateLimitedError, UpstreamError

logger = structlog.get_logger()


class CallBudget:
    """Counts outbound calls made during one cycle."""

    def __init__(self):
        self.calls = 0

    def spend(self) -> None:
        self.calls += 1

    def reset(self) -> None:
        self.calls = 0

    def exhausted(self, limit: int) -> bool:
        return self.calls >= limit


@lru_cache(maxsize=None)
def _adapter(schema: Any) -> TypeAdapter:
    return TypeAdapter(schema)


class BaseAPIClient(ABC):
    """
    Abstract base class for all API clients.

    Every call goes through `fetch`, which:
    - charges the shared CallBudget once (retries are free)
    - retries only on 429, waiting `retry_base_delay_seconds * 2**attempt`
    - turns any other non-2xx status into UpstreamError
    - validates the JSON body against the schema given by the caller
    """

    # Must be set by subclasses
    SOURCE: str = "unknown"

    def __init__(
        self,
        base_url: Optional[str] = None,
        budget: Optional[CallBudget] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or get_settings()
        self.base_url = base_url or self._get_default_base_url()
        self.budget = budget or CallBudget()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        # Metrics
        self._request_count = 0
        self._error_count = 0
        self._total_latency_ms = 0.0

    @abstractmethod
    def _get_default_base_url(self) -> str:
        """Get default base URL for this source."""
        pass

    @abstractmethod
    def _get_headers(self) -> dict[str, str]:
        """Get headers for requests (including auth)."""
        pass

    async def __aenter__(self) -> "BaseAPIClient":
        await self.connect()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def connect(self) -> None:
        """Initialize the HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self._settings.api_timeout_seconds),
            headers=self._get_headers(),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug(
                "API client closed",
                source=self.SOURCE,
                requests_made=self._request_count,
                errors=self._error_count,
            )

    async def _make_request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """
        Make a single HTTP request.
        Raises RateLimitedError on 429 so the retry loop can back off.
        """
        if not self._client:
            raise RuntimeError("Client not connected. Call connect() first.")

        log = logger.bind(source=self.SOURCE, method=method, path=path)
        start = time.monotonic()

        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            self._error_count += 1
            log.warning("API request failed", error=str(e))
            raise UpstreamError(f"API call to {path} failed: {e}", url=path) from e

        elapsed_ms = (time.monotonic() - start) * 1000
        self._request_count += 1
        self._total_latency_ms += elapsed_ms

        log.debug(
            "API request completed",
            status=response.status_code,
            latency_ms=round(elapsed_ms, 2),
        )

        if response.status_code == 429:
            log.warning("Rate limited")
            raise RateLimitedError(
                f"API call to {response.url} was rate limited",
                url=str(response.url),
                status_code=429,
            )
        return response

    async def _request_with_retry(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Make request, backing off on 429 only."""
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(RateLimitedError),
            stop=stop_after_attempt(self._settings.retry_max_attempts + 1),
            wait=wait_exponential(multiplier=self._settings.retry_base_delay_seconds, max=60),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._make_request(method, path, **kwargs)

    async def fetch(self, method: str, path: str, schema: Any, **kwargs) -> Any:
        """
        Make one budgeted call and return the body validated against `schema`.

        Any failure (status, transport, payload shape) is raised as
        UpstreamError so callers see a single failure type.
        """
        self.budget.spend()
        response = await self._request_with_retry(method, path, **kwargs)

        if not response.is_success:
            self._error_count += 1
            raise UpstreamError(
                f"API call to {response.url} returned error: [{response.status_code}] {response.text[:500]}",
                url=str(response.url),
                status_code=response.status_code,
            )

        try:
            return _adapter(schema).validate_python(response.json())
        except ValueError as e:
            self._error_count += 1
            raise UpstreamError(
                f"API call to {response.url} returned an unexpected payload: {e}",
                url=str(response.url),
                status_code=response.status_code,
            ) from e

    async def get(self, path: str, schema: Any, params: Optional[dict[str, Any]] = None) -> Any:
        return await self.fetch("GET", path, schema, params=params)

    async def post(self, path: str, schema: Any, json_body: Optional[dict[str, Any]] = None) -> Any:
        return await self.fetch("POST", path, schema, json=json_body)

    def get_metrics(self) -> dict[str, Any]:
        """Get client metrics."""
        avg_latency = (
            self._total_latency_ms / self._request_count
            if self._request_count > 0
            else 0
        )
        return {
            "source": self.SOURCE,
            "requests": self._request_count,
            "errors": self._error_count,
            "avg_latency_ms": round(avg_latency, 2),
        }
