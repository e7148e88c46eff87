"""Shared async HTTP plumbing for outbound API clients."""

from typing import Any

import httpx

from .config import HttpConfig

DEFAULT_LIMITS = httpx.Limits(max_connections=20, max_keepalive_connections=10)


class AsyncHttpClient:
    """Lazily created, reusable ``httpx.AsyncClient`` holder."""

    def __init__(self, http: HttpConfig | None = None):
        self.http = http or HttpConfig()
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.http.timeout_seconds, connect=self.http.connect_timeout_seconds),
                limits=DEFAULT_LIMITS,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request. Non-2xx responses are returned, not raised."""
        client = await self._get_client()
        return await client.request(method, url, **kwargs)
