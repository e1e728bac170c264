"""Token endpoint request and response models.

A token request is one grant (authorization_code, client_credentials,
device_code or refresh_token) combined with one client authentication
method. Each is its own type carrying exactly the fields it needs.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, SecretStr

from grantflow.models.keys import RsaSigningKey
from grantflow.settings import DEVICE_CODE_GRANT_TYPE


def _secret(value: str | SecretStr) -> SecretStr:
    return value if isinstance(value, SecretStr) else SecretStr(value)


# Grants


@dataclass(frozen=True)
class AuthorizationCodeGrant:
    """RFC 6749 Section 4.1.3, with the RFC 7636 code_verifier."""

    code: str
    code_verifier: str | None = None
    grant_type: str = "authorization_code"

    def to_form_data(self) -> dict[str, str]:
        data = {"grant_type": self.grant_type, "code": self.code}
        if self.code_verifier:
            data["code_verifier"] = self.code_verifier
        return data


@dataclass(frozen=True)
class ClientCredentialsGrant:
    """RFC 6749 Section 4.4."""

    grant_type: str = "client_credentials"

    def to_form_data(self) -> dict[str, str]:
        return {"grant_type": self.grant_type}


@dataclass(frozen=True)
class DeviceCodeGrant:
    """RFC 8628 Section 3.4."""

    device_code: str
    grant_type: str = DEVICE_CODE_GRANT_TYPE

    def to_form_data(self) -> dict[str, str]:
        return {"grant_type": self.grant_type, "device_code": self.device_code}


@dataclass(frozen=True)
class RefreshTokenGrant:
    """RFC 6749 Section 6."""

    refresh_token: str
    grant_type: str = "refresh_token"

    def to_form_data(self) -> dict[str, str]:
        return {"grant_type": self.grant_type, "refresh_token": self.refresh_token}


Grant = (
    AuthorizationCodeGrant
    | ClientCredentialsGrant
    | DeviceCodeGrant
    | RefreshTokenGrant
)


# Client authentication


@dataclass(frozen=True)
class NoClientAuth:
    """Public client: client_id only."""

    method: str = "none"


@dataclass(frozen=True)
class ClientSecretBasic:
    client_secret: SecretStr
    method: str = "client_secret_basic"

    def __post_init__(self) -> None:
        object.__setattr__(self, "client_secret", _secret(self.client_secret))


@dataclass(frozen=True)
class ClientSecretPost:
    client_secret: SecretStr
    method: str = "client_secret_post"

    def __post_init__(self) -> None:
        object.__setattr__(self, "client_secret", _secret(self.client_secret))


@dataclass(frozen=True)
class ClientSecretJwt:
    """HMAC-signed client assertion (RFC 7523)."""

    client_secret: SecretStr
    double_encode: bool = True
    custom_claims: Mapping[str, Any] | None = None
    method: str = "client_secret_jwt"

    def __post_init__(self) -> None:
        object.__setattr__(self, "client_secret", _secret(self.client_secret))


@dataclass(frozen=True)
class PrivateKeyJwt:
    """RSA-signed client assertion (RFC 7523)."""

    signing_key: RsaSigningKey
    custom_claims: Mapping[str, Any] | None = None
    method: str = "private_key_jwt"


ClientAuth = (
    NoClientAuth
    | ClientSecretBasic
    | ClientSecretPost
    | ClientSecretJwt
    | PrivateKeyJwt
)


@dataclass(frozen=True)
class TokenRequest:
    """A complete token endpoint request.

    client_id, redirect_uri and scope are sent with every grant; nonce is
    only used locally to check an id_token in the response.
    """

    token_endpoint: str
    client_id: str
    grant: Grant
    client_auth: ClientAuth = field(default_factory=NoClientAuth)
    redirect_uri: str | None = None
    scope: str | None = None
    nonce: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.grant, ClientCredentialsGrant) and isinstance(
            self.client_auth, NoClientAuth
        ):
            raise ValueError(
                "client_credentials grant requires a client secret or certificate"
            )

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request.

        Client authentication fields are added by the token manager.
        """
        data = {"client_id": self.client_id}
        if self.redirect_uri:
            data["redirect_uri"] = self.redirect_uri
        if self.scope:
            data["scope"] = self.scope
        data.update(self.grant.to_form_data())
        return data


class TokenResponse(BaseModel):
    """Token endpoint response (RFC 6749 Section 5.1).

    Fields the server sends beyond the standard ones are kept as extras.
    expiry_datetime is derived from expires_in when the response is built.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    access_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None
    expiry_datetime: datetime | None = None

    @classmethod
    def from_response(
        cls, data: Mapping[str, Any], now: datetime | None = None
    ) -> TokenResponse:
        values = dict(data)
        if values.get("expires_in") is not None:
            now = now or datetime.now(timezone.utc)
            values["expiry_datetime"] = now + timedelta(
                seconds=int(values["expires_in"])
            )
        return cls.model_validate(values)

    def is_success(self) -> bool:
        return self.access_token is not None
