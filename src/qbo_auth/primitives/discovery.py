"""Intuit OpenID discovery primitive.

Fetches the provider's well-known configuration once per process to learn
the current OAuth endpoint URLs. Discovery is an optimization: any failure
falls back to the built-in endpoints and is never raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging

import httpx
from pydantic import ValidationError

from qbo_auth.models.config import Environment
from qbo_auth.models.discovery import (
    DISCOVERY_URLS,
    DiscoveryDocument,
    default_discovery,
)
from qbo_auth.models.errors import DiscoveryError

logger = logging.getLogger(__name__)


class DiscoveryResolver:
    """Resolves and memoizes the provider discovery document.

    The document is fetched at most once for the lifetime of the resolver.
    When that fetch fails, the built-in endpoints are cached in its place.
    """

    def __init__(
        self,
        environment: Environment = Environment.SANDBOX,
        discovery_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        """Initialize discovery.

        Args:
            environment: Selects the per-environment discovery URL and defaults
            discovery_url: Override for the well-known URL
            http_client: Shared HTTP client; one is created when omitted
            timeout: HTTP request timeout in seconds
        """
        self.environment = environment
        self.discovery_url = discovery_url or DISCOVERY_URLS[environment]
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._document: DiscoveryDocument | None = None
        self._resolved: DiscoveryDocument | None = None
        self._lock = asyncio.Lock()

    @property
    def document(self) -> DiscoveryDocument | None:
        """Discovered document, or None if discovery has not succeeded."""
        return self._document

    async def resolve(self) -> DiscoveryDocument:
        """Return the discovered endpoints, falling back to defaults.

        Never raises.
        """
        if self._resolved is not None:
            return self._resolved

        async with self._lock:
            if self._resolved is not None:
                return self._resolved

            try:
                self._document = await self._fetch()
            except DiscoveryError as e:
                logger.warning(
                    f"Failed to fetch discovery document, using defaults: {e}"
                )
                self._resolved = default_discovery(self.environment)
                return self._resolved

            logger.debug(
                f"Discovered OAuth endpoints from {self.discovery_url}: "
                f"token_endpoint={self._document.token_endpoint}"
            )
            self._resolved = self._document
            return self._resolved

    async def _fetch(self) -> DiscoveryDocument:
        """Fetch and parse the discovery document.

        Raises:
            DiscoveryError: If fetch or parsing fails
        """
        try:
            logger.debug(f"Fetching discovery document from: {self.discovery_url}")
            response = await self._http_client.get(
                self.discovery_url, headers={"Accept": "application/json"}
            )
            response.raise_for_status()
            return DiscoveryDocument.model_validate_json(response.text)

        except httpx.HTTPStatusError as e:
            raise DiscoveryError(
                f"Discovery fetch failed: {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise DiscoveryError(f"Discovery request failed: {e}") from e
        except ValidationError as e:
            raise DiscoveryError(
                f"Invalid discovery document from {self.discovery_url}: {e}"
            ) from e
        except Exception as e:
            raise DiscoveryError(
                f"Unexpected error fetching discovery document: {e}"
            ) from e

    async def close(self) -> None:
        """Close the HTTP client if this resolver created it."""
        if self._owns_client:
            await self._http_client.aclose()
