"""OpenID Connect discovery primitive.

Fetches OpenID Provider metadata from the issuer's well-known endpoint and
the JSON Web Key Set it advertises, for token signature verification.
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

import httpx
from pydantic import ValidationError

from grantflow.models.discovery import JsonWebKeySet, OpenIDProviderMetadata
from grantflow.models.errors import DiscoveryError
from grantflow.settings import HTTP_TIMEOUT_DEFAULT

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


class OpenIDDiscovery:
    """Fetches OpenID Provider metadata and signing keys."""

    def __init__(self, timeout: float = HTTP_TIMEOUT_DEFAULT):
        """Initialize OpenID discovery.

        Args:
            timeout: HTTP request timeout in seconds
        """
        self.timeout = timeout
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def discover(self, issuer: str) -> OpenIDProviderMetadata:
        """Fetch the provider metadata for an issuer.

        Args:
            issuer: Issuer identifier, typically the token's iss claim

        Returns:
            Parsed provider metadata

        Raises:
            DiscoveryError: If the metadata cannot be fetched or parsed
        """
        metadata_url = self.build_configuration_url(issuer)
        try:
            logger.debug(f"Fetching OpenID provider metadata from: {metadata_url}")
            response = await self._http_client.get(metadata_url)
            response.raise_for_status()

            metadata = OpenIDProviderMetadata.model_validate_json(response.text)
            logger.debug(f"Discovered OpenID provider metadata for {metadata.issuer}")
            return metadata

        except httpx.HTTPError as e:
            raise DiscoveryError(
                f"Failed to fetch OpenID provider metadata from {metadata_url}: {e}"
            ) from e
        except ValidationError as e:
            raise DiscoveryError(
                f"Invalid OpenID provider metadata from {metadata_url}: {e}"
            ) from e

    async def fetch_jwks(self, jwks_uri: str) -> JsonWebKeySet:
        """Fetch the JSON Web Key Set published at jwks_uri.

        Raises:
            DiscoveryError: If the key set cannot be fetched or parsed
        """
        try:
            logger.debug(f"Fetching JSON Web Key Set from: {jwks_uri}")
            response = await self._http_client.get(jwks_uri)
            response.raise_for_status()

            jwks = JsonWebKeySet.model_validate_json(response.text)
            logger.debug(f"Fetched {len(jwks.keys)} keys from {jwks_uri}")
            return jwks

        except httpx.HTTPError as e:
            raise DiscoveryError(
                f"Failed to fetch JSON Web Key Set from {jwks_uri}: {e}"
            ) from e
        except ValidationError as e:
            raise DiscoveryError(
                f"Invalid JSON Web Key Set from {jwks_uri}: {e}"
            ) from e

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()

    @staticmethod
    def build_configuration_url(issuer: str) -> str:
        """Build the well-known configuration URL for an issuer.

        Issuers without a scheme are treated as https. Any path on the issuer
        is kept, per OpenID Connect Discovery 1.0 Section 4.1.
        """
        if "://" not in issuer:
            issuer = f"https://{issuer}"
        parsed = urlparse(issuer)
        path = parsed.path.rstrip("/")
        base_url = f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"
        return f"{base_url}{path}{WELL_KNOWN_PATH}"
