"""npm registry client for depbump.

Provides an async-safe, per-run cache of :class:`VersionCatalog` objects
so that every manifest in a workspace run shares a single HTTP fetch per
package.

Typical usage::

    from depbump.utils.http import HTTPClient
    from depbump.core.registry import NpmRegistry

    async with HTTPClient() as client:
        registry = NpmRegistry(client)
        catalog = await registry.fetch_catalog("react")
        print(catalog.tag("latest"))        # e.g. Version('18.3.1')
"""

from __future__ import annotations

import asyncio
from urllib.parse import quote
from typing import Dict, Protocol

from depbump.utils.http import HTTPClient
from depbump.utils.logger import get_logger
from depbump.constants import DEFAULT_REGISTRY
from depbump.models.catalog import VersionCatalog
from depbump.exceptions import PackageNotFoundError, RegistryError

logger = get_logger("registry")

__all__ = ["CatalogProvider", "NpmRegistry", "package_url"]


class CatalogProvider(Protocol):
    """Anything that can look up the published versions of a package."""

    async def fetch_catalog(self, name: str) -> VersionCatalog:
        ...


def package_url(registry: str, name: str) -> str:
    """Return the packument URL for ``name``.

    Scoped names keep their ``@`` but encode the slash, which is what the
    public registry and most mirrors expect.

    Example::

        >>> package_url("https://registry.npmjs.org/", "@types/node")
        'https://registry.npmjs.org/@types%2Fnode'
    """
    base = registry if registry.endswith("/") else registry + "/"
    return base + quote(name, safe="@")


class NpmRegistry:
    """Async-safe, per-run cache for npm packuments.

    Each package name triggers at most one request. A semaphore bounds
    concurrent fetches and a second cache check inside it keeps
    coroutines waiting on the same package from fetching it twice.

    Args:
        http_client: A pre-configured :class:`HTTPClient`.
        registry: Registry base URL.
        concurrent_limit: Maximum number of fetches in flight at once.
    """

    def __init__(
        self,
        http_client: HTTPClient,
        *,
        registry: str = DEFAULT_REGISTRY,
        concurrent_limit: int = 8,
    ) -> None:
        self.http_client = http_client
        self.registry = registry
        self._semaphore = asyncio.Semaphore(concurrent_limit)
        self._catalogs: Dict[str, VersionCatalog] = {}

    # ------------------------------------------------------------------
    # Public async accessors
    # ------------------------------------------------------------------

    async def fetch_catalog(self, name: str) -> VersionCatalog:
        """Fetch (or return cached) the catalog for ``name``.

        Raises:
            PackageNotFoundError: The registry has no document, or no
                versions, for ``name``.
            NetworkError: The lookup failed after retries.
        """
        if name in self._catalogs:
            return self._catalogs[name]

        async with self._semaphore:
            if name in self._catalogs:
                return self._catalogs[name]

            catalog = await self._fetch(name)
            self._catalogs[name] = catalog
            return catalog

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fetch(self, name: str) -> VersionCatalog:
        url = package_url(self.registry, name)
        logger.debug("Fetching %s", url)

        try:
            document = await self.http_client.get_json(url)
        except RegistryError as exc:
            if exc.status_code == 404:
                raise PackageNotFoundError(
                    f"Package '{name}' not found in registry",
                    package_name=name,
                    url=url,
                    status_code=404,
                ) from exc
            raise

        catalog = VersionCatalog.from_packument(name, document)
        if catalog.is_empty:
            raise PackageNotFoundError(
                f"Package '{name}' has no published versions",
                package_name=name,
                url=url,
            )

        logger.debug("Loaded %d versions for %s", len(catalog), name)
        return catalog
