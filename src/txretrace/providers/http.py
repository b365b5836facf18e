"""
Shared HTTP plumbing for provider adapters.

Each adapter owns an httpx.AsyncClient (or borrows an injected one) and
funnels every request through JsonHttpProvider._request, which maps transport
failures, non-200 statuses and payloads that fail pydantic validation to
ProviderError.
"""

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from txretrace.errors import ProviderError

logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseModel)


class JsonHttpProvider:
    """
    Base for adapters speaking JSON over HTTP.

    Attributes:
        name: Provider name used in errors and logs
        base_url: Endpoint root
        timeout_seconds: Request timeout
    """

    name: str = "http"

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 20.0,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.headers = headers or {}
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "JsonHttpProvider":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        model: type[ResponseT],
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        base_url: str | None = None,
    ) -> ResponseT:
        """Send a request and validate the JSON body against `model`."""
        url = f"{(base_url or self.base_url).rstrip('/')}{path}"
        logger.debug("%s %s %s params=%s", self.name, method, url, params)

        try:
            response = await self._get_client().request(
                method,
                url,
                params=params,
                json=json,
                headers=self.headers,
                timeout=self.timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise ProviderError(
                provider=self.name,
                url=url,
                underlying_error=f"Timed out after {self.timeout_seconds}s",
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(provider=self.name, url=url, underlying_error=str(e)) from e

        if response.status_code != 200:
            raise ProviderError(
                provider=self.name,
                url=url,
                status_code=response.status_code,
                underlying_error=f"HTTP {response.status_code}: {response.text[:500]}",
            )

        try:
            return model.model_validate_json(response.content)
        except ValidationError as e:
            raise ProviderError(
                provider=self.name,
                url=url,
                status_code=response.status_code,
                underlying_error=f"Unexpected payload: {e.error_count()} validation error(s): {e}",
            ) from e
