"""Authorization flow models for OAuth 2.0 and OpenID Connect.

Contains the request state built before user interaction and the result
produced once the authorization response has been parsed and validated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from urllib.parse import urlencode

RESERVED_CUSTOM_PARAMETERS = (
    "nonce",
    "state",
    "code_challenge",
    "code_challenge_method",
    "code_verifier",
)


class AuthProtocol(str, Enum):
    OAUTH = "oauth"
    OIDC = "oidc"


class ResponseMode(str, Enum):
    QUERY = "query"
    FRAGMENT = "fragment"
    FORM_POST = "form_post"


class FlowState(str, Enum):
    """Stages an authorization request passes through."""

    BUILDING = "building"
    AWAITING_USER_INTERACTION = "awaiting_user_interaction"
    PARSING_RESPONSE = "parsing_response"
    VALIDATED = "validated"
    FAILED = "failed"


def scope_values(scope: str | None) -> list[str]:
    return scope.split() if scope else []


def detect_protocol(response_type: str, scope: str | None) -> AuthProtocol:
    """OIDC when an id_token is requested, or a code is requested with openid scope."""
    response_types = response_type.split()
    if "id_token" in response_types:
        return AuthProtocol.OIDC
    if response_types == ["code"] and "openid" in scope_values(scope):
        return AuthProtocol.OIDC
    return AuthProtocol.OAUTH


@dataclass(frozen=True)
class AuthorizationRequestState:
    """Everything sent to the authorization endpoint for one request.

    Built once at the start of a flow and discarded after the redirect has
    been resolved.
    """

    authorization_endpoint: str
    client_id: str
    response_type: str
    state: str
    protocol: AuthProtocol = AuthProtocol.OAUTH
    redirect_uri: str | None = None
    scope: str | None = None
    response_mode: ResponseMode | None = None
    nonce: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None
    code_verifier: str | None = None
    custom_parameters: tuple[tuple[str, str], ...] = ()

    @property
    def is_oidc(self) -> bool:
        return self.protocol is AuthProtocol.OIDC

    @property
    def uses_code(self) -> bool:
        return "code" in self.response_type.split()

    @property
    def is_form_post(self) -> bool:
        return self.response_mode is ResponseMode.FORM_POST

    def query_parameters(self) -> list[tuple[str, str]]:
        """Authorization request parameters in wire order."""
        params: list[tuple[str, str]] = [
            ("response_type", self.response_type),
            ("client_id", self.client_id),
            ("state", self.state),
        ]
        if self.redirect_uri:
            params.append(("redirect_uri", self.redirect_uri))
        if self.scope:
            params.append(("scope", self.scope))
        if self.nonce:
            params.append(("nonce", self.nonce))
        if self.code_challenge:
            params.append(("code_challenge", self.code_challenge))
            params.append(
                ("code_challenge_method", self.code_challenge_method or "S256")
            )
        params.extend(
            (key, value)
            for key, value in self.custom_parameters
            if key not in RESERVED_CUSTOM_PARAMETERS
        )
        # query and fragment are implied by response_type
        if self.is_form_post:
            params.append(("response_mode", ResponseMode.FORM_POST.value))
        return params

    def build_authorization_url(self) -> str:
        """Build the complete authorization URL."""
        separator = "&" if "?" in self.authorization_endpoint else "?"
        query = urlencode(self.query_parameters())
        return f"{self.authorization_endpoint}{separator}{query}"


@dataclass(frozen=True)
class AuthorizationResult:
    """Validated outcome of an authorization request.

    state has already been checked and is not carried further. For code
    flows client_id, code_verifier and redirect_uri are the values the token
    exchange needs.
    """

    client_id: str
    code: str | None = None
    access_token: str | None = None
    id_token: str | None = None
    token_type: str | None = None
    scope: str | None = None
    nonce: str | None = None
    code_verifier: str | None = None
    redirect_uri: str | None = None
    expires_in: int | None = None
    expiry_datetime: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def has_code(self) -> bool:
        return self.code is not None
