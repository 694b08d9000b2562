"""
HTTP client utilities for depbump.

An asynchronous client for npm registry documents. It retries transient
failures with exponential backoff, waits out ``429`` responses, and maps
registry status codes onto depbump exceptions. Concurrency is bounded by
the caller (see :class:`depbump.core.registry.NpmRegistry`).
"""

from __future__ import annotations

import httpx
import random
import asyncio
from typing import Any, Dict, Optional, cast

from depbump.utils.logger import get_logger
from depbump.__version__ import __version__
from depbump.exceptions import NetworkError, RegistryError
from depbump.constants import (
    DEFAULT_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    USER_AGENT_TEMPLATE,
)

logger = get_logger("http")

#: Upper bound on a server-requested ``Retry-After`` wait, in seconds.
MAX_RETRY_AFTER = 60


def _retry_after(response: httpx.Response) -> float:
    """Seconds to wait before retrying a ``429``; HTTP dates fall back to 1s."""
    value = response.headers.get("Retry-After", "1")
    try:
        seconds = float(value)
    except ValueError:
        return 1.0
    return min(max(seconds, 0.0), MAX_RETRY_AFTER)


class HTTPClient:
    """Asynchronous client for registry requests.

    Args:
        timeout: Per-request timeout in seconds.
        max_retries: Retries after the first attempt for timeouts, network
            errors and ``5xx`` responses.
        token: Bearer token sent as ``Authorization`` (private registries).
        strict_ssl: Verify TLS certificates.
        user_agent: Custom User-Agent header value.

    Example:
        >>> async with HTTPClient(token=os.environ.get("NPM_TOKEN")) as client:
        ...     data = await client.get_json("https://registry.npmjs.org/react")
    """

    def __init__(
        self,
        *,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        token: Optional[str] = None,
        strict_ssl: bool = True,
        user_agent: Optional[str] = None,
    ) -> None:
        self.timeout = timeout
        self.max_retries = max_retries
        self.strict_ssl = strict_ssl
        self.user_agent = user_agent or USER_AGENT_TEMPLATE.format(version=__version__)
        self._token = token

        self._client: Optional[httpx.AsyncClient] = None
        self._max_429_retries: int = 5

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"User-Agent": self.user_agent}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def __aenter__(self) -> "HTTPClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    async def _ensure_client(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                http2=True,
                verify=self.strict_ssl,
                follow_redirects=True,
                headers=self.headers,
            )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Execute an HTTP request with retry and exponential backoff."""
        await self._ensure_client()
        assert self._client is not None

        clean_url = url.strip().strip("\"'")
        last_exc: Optional[Exception] = None
        retry_429_count = 0

        for attempt in range(self.max_retries + 1):
            try:
                response = await self._client.request(method, clean_url, **kwargs)

                if response.status_code == 429:
                    retry_429_count += 1
                    if retry_429_count > self._max_429_retries:
                        raise NetworkError(
                            f"Rate limit exceeded after {self._max_429_retries} retries",
                            url=clean_url,
                            status_code=429,
                        )
                    wait = _retry_after(response)
                    logger.warning(
                        "Registry rate limit hit, retrying in %gs (%d/%d)",
                        wait,
                        retry_429_count,
                        self._max_429_retries,
                    )
                    await asyncio.sleep(wait)
                    continue

                if response.status_code == 404:
                    raise RegistryError(
                        f"Resource not found: {clean_url}",
                        url=clean_url,
                        status_code=404,
                    )

                if response.status_code in (401, 403):
                    hint = "set NPM_TOKEN" if not self._token else "check the registry token"
                    raise NetworkError(
                        f"HTTP {response.status_code} from registry ({hint}): {clean_url}",
                        url=clean_url,
                        status_code=response.status_code,
                    )

                if response.status_code >= 400:
                    response.raise_for_status()

                return response

            except httpx.TimeoutException as exc:
                last_exc = exc
                logger.warning(
                    "Request timeout (%d/%d): %s",
                    attempt + 1,
                    self.max_retries + 1,
                    clean_url,
                )

            except httpx.NetworkError as exc:
                last_exc = exc
                logger.warning(
                    "Network error (%d/%d): %s",
                    attempt + 1,
                    self.max_retries + 1,
                    exc,
                )

            except httpx.HTTPStatusError as exc:
                if 400 <= exc.response.status_code < 500:
                    raise NetworkError(
                        f"HTTP {exc.response.status_code} error for {clean_url}",
                        url=clean_url,
                        status_code=exc.response.status_code,
                        response_body=exc.response.text,
                    ) from exc
                last_exc = exc
                logger.warning(
                    "HTTP %d error (%d/%d): %s",
                    exc.response.status_code,
                    attempt + 1,
                    self.max_retries + 1,
                    clean_url,
                )

            if attempt < self.max_retries:
                delay = (2**attempt) + random.uniform(0.0, 0.3)
                logger.debug("Retrying in %.2fs", delay)
                await asyncio.sleep(delay)

        raise NetworkError(
            f"Request failed after {self.max_retries + 1} attempts: {clean_url}",
            url=clean_url,
        ) from last_exc

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        """Perform a GET request with retry logic."""
        return await self._request_with_retry("GET", url, **kwargs)

    async def get_json(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        """Fetch a registry document and return it as a JSON object.

        Raises:
            NetworkError: The body is not a JSON object.
        """
        response = await self.get(url, **kwargs)

        try:
            data = response.json()
        except ValueError as exc:
            raise NetworkError(
                f"Invalid JSON response from {url}",
                url=url,
                response_body=response.text,
            ) from exc

        if not isinstance(data, dict):
            raise NetworkError(
                f"Expected JSON object from {url}",
                url=url,
                response_body=response.text,
            )

        return cast(Dict[str, Any], data)
