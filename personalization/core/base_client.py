import asyncio
from typing import Any

import httpx
from loguru import logger

from personalization.core.errors import CollaboratorUnavailableError


class BaseClient:
    """
    Base asynchronous HTTP client for collaborator services, with retry logic and logging.

    Transport errors and 5xx responses are retried with exponential backoff. Once retries
    are exhausted the failure surfaces as CollaboratorUnavailableError so callers can degrade.
    """

    def __init__(
        self, base_url: str = "", timeout: float = 3.0, max_retries: int = 2, headers: dict[str, str] | None = None
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.headers = headers or {}
        self._client: httpx.AsyncClient | None = None

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx.AsyncClient instance."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, headers=self.headers, follow_redirects=True
            )
        return self._client

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = await self.get_client()
        tries = max(1, self.max_retries)
        last_exception: Exception | None = None

        for attempt in range(1, tries + 1):
            try:
                response = await client.request(method, url, **kwargs)
                if response.status_code >= 500:
                    response.raise_for_status()
                return response
            except (httpx.HTTPStatusError, httpx.RequestError) as e:
                last_exception = e
                if attempt < tries:
                    wait_time = 0.2 * (2 ** (attempt - 1))
                    logger.warning(
                        f"Request failed ({method} {url}): {e}. Retrying in {wait_time}s... (Attempt {attempt}/{tries})"
                    )
                    await asyncio.sleep(wait_time)
                else:
                    logger.error(f"Request failed after {tries} attempts ({method} {url}): {e}")

        raise CollaboratorUnavailableError(f"{method} {self.base_url}{url} failed: {last_exception}")

    async def get(self, url: str, params: dict[str, Any] | None = None, **kwargs) -> Any:
        """Perform a GET request and return the decoded JSON body, or None on 404."""
        response = await self._request("GET", url, params=params, **kwargs)
        if response.status_code == 404:
            return None
        if response.is_error:
            raise CollaboratorUnavailableError(f"GET {self.base_url}{url} returned {response.status_code}")
        return response.json()

    async def post(self, url: str, json: dict[str, Any] | None = None, **kwargs) -> Any:
        """Perform a POST request and return the decoded JSON body (None when empty)."""
        response = await self._request("POST", url, json=json, **kwargs)
        if response.is_error:
            raise CollaboratorUnavailableError(f"POST {self.base_url}{url} returned {response.status_code}")
        return response.json() if response.content else None
