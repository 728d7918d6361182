"""
OpenID configuration and JWKS, fetched lazily and memoized per client instance.
Nothing is refetched implicitly; refresh() drops both so the next access refetches
(e.g. after the provider rotates its keys).

First access is not serialized: concurrent first callers may each fetch, and the last
write wins. Both documents are idempotent so the duplicate fetch is harmless.
"""
import logging

import httpx
from jwt import PyJWKSet

from fief_sdk.models import ProviderMetadata
from fief_sdk.transport import raise_for_error

logger = logging.getLogger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"


class DiscoveryCache:
    def __init__(self, http_client: httpx.Client, base_url: str):
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self._metadata: ProviderMetadata | None = None
        self._signing_keys: PyJWKSet | None = None

    def get_provider_metadata(self) -> ProviderMetadata:
        if self._metadata is not None:
            return self._metadata
        url = f"{self.base_url}{DISCOVERY_PATH}"
        response = self.http_client.get(url)
        raise_for_error(response)
        self._metadata = response.json()
        logger.info("Fetched OpenID configuration from %s", url)
        return self._metadata

    def get_signing_keys(self) -> PyJWKSet:
        if self._signing_keys is not None:
            return self._signing_keys
        jwks_uri = self.get_provider_metadata()["jwks_uri"]
        response = self.http_client.get(jwks_uri)
        raise_for_error(response)
        self._signing_keys = PyJWKSet.from_dict(response.json())
        logger.info("Fetched JWKS from %s (%d keys)", jwks_uri, len(self._signing_keys.keys))
        return self._signing_keys

    def refresh(self) -> None:
        self._metadata = None
        self._signing_keys = None


class AsyncDiscoveryCache:
    """Same contract as DiscoveryCache over an httpx.AsyncClient."""

    def __init__(self, http_client: httpx.AsyncClient, base_url: str):
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self._metadata: ProviderMetadata | None = None
        self._signing_keys: PyJWKSet | None = None

    async def get_provider_metadata(self) -> ProviderMetadata:
        if self._metadata is not None:
            return self._metadata
        url = f"{self.base_url}{DISCOVERY_PATH}"
        response = await self.http_client.get(url)
        raise_for_error(response)
        self._metadata = response.json()
        logger.info("Fetched OpenID configuration from %s", url)
        return self._metadata

    async def get_signing_keys(self) -> PyJWKSet:
        if self._signing_keys is not None:
            return self._signing_keys
        metadata = await self.get_provider_metadata()
        response = await self.http_client.get(metadata["jwks_uri"])
        raise_for_error(response)
        self._signing_keys = PyJWKSet.from_dict(response.json())
        logger.info("Fetched JWKS from %s (%d keys)", metadata["jwks_uri"], len(self._signing_keys.keys))
        return self._signing_keys

    def refresh(self) -> None:
        self._metadata = None
        self._signing_keys = None
