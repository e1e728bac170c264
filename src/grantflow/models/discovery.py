"""Discovery-related models for OpenID Provider metadata.

Contains models for OpenID Connect Discovery 1.0 provider metadata and the
JSON Web Key Set it points to.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OpenIDProviderMetadata(BaseModel):
    """OpenID Provider Metadata (OpenID Connect Discovery 1.0 Section 3).

    Only the fields this client uses are declared; everything else the
    provider publishes is kept as extra data.
    """

    model_config = ConfigDict(extra="allow")

    issuer: str
    jwks_uri: str

    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    device_authorization_endpoint: str | None = None
    userinfo_endpoint: str | None = None

    response_types_supported: list[str] = Field(default_factory=list)
    response_modes_supported: list[str] | None = None
    code_challenge_methods_supported: list[str] | None = None
    token_endpoint_auth_methods_supported: list[str] | None = None
    id_token_signing_alg_values_supported: list[str] | None = None
    scopes_supported: list[str] | None = None


class JsonWebKeySet(BaseModel):
    """JSON Web Key Set (RFC 7517 Section 5)."""

    keys: list[dict[str, Any]] = Field(default_factory=list)

    def find(self, kid: str | None) -> dict[str, Any] | None:
        """Return the key whose kid matches, or None."""
        if kid is None:
            return None
        for key in self.keys:
            if key.get("kid") == kid:
                return key
        return None
