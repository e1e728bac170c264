"""OAuth 2.0 token endpoint client.

Implements RFC 6749 token endpoint requests for the authorization_code,
client_credentials, refresh_token and RFC 8628 device_code grants, with
client_secret_basic, client_secret_post, client_secret_jwt and
private_key_jwt client authentication.
"""

from __future__ import annotations

import base64
import logging

import httpx

from grantflow.models.keys import SharedSecret
from grantflow.models.tokens import (
    ClientSecretBasic,
    ClientSecretJwt,
    ClientSecretPost,
    NoClientAuth,
    PrivateKeyJwt,
    TokenRequest,
    TokenResponse,
)
from grantflow.primitives import jwt as jwt_codec
from grantflow.services.assertions import JwtAssertionBuilder
from grantflow.services.security import validate_nonce
from grantflow.settings import HTTP_TIMEOUT_DEFAULT

logger = logging.getLogger(__name__)


class OAuth2TokenManager:
    """Sends token requests and post-processes token responses.

    Uses application/x-www-form-urlencoded encoding as required by RFC 6749.
    Transport and HTTP status errors propagate unchanged; nothing is retried
    here.
    """

    def __init__(
        self,
        timeout: float = HTTP_TIMEOUT_DEFAULT,
        assertion_builder: JwtAssertionBuilder | None = None,
    ):
        """Initialize token manager.

        Args:
            timeout: HTTP request timeout in seconds
            assertion_builder: Builder for JWT client assertions
        """
        self.timeout = timeout
        self._http_client = httpx.AsyncClient(timeout=timeout)
        self._assertion_builder = assertion_builder or JwtAssertionBuilder()

    async def request_token(self, token_request: TokenRequest) -> TokenResponse:
        """Send a token request.

        Args:
            token_request: Grant, client authentication and common parameters

        Returns:
            TokenResponse with expiry_datetime derived from expires_in

        Raises:
            httpx.HTTPStatusError: If the token endpoint returned an error status
            httpx.RequestError: If the request could not be sent
            NonceMismatchError: If a returned id_token carries a different nonce
        """
        headers = httpx.Headers(
            {
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
            }
        )
        headers.update(token_request.headers)

        form_data = token_request.to_form_data()
        self._apply_client_auth(token_request, form_data, headers)

        # Log request details (without sensitive data)
        logger.debug(
            f"Token request to {token_request.token_endpoint}: "
            f"grant_type={form_data['grant_type']}, "
            f"client_id={token_request.client_id}, "
            f"auth={token_request.client_auth.method}"
        )

        response = await self._http_client.post(
            token_request.token_endpoint,
            data=form_data,
            headers=headers,
        )
        response.raise_for_status()

        token_response = TokenResponse.from_response(response.json())

        if token_request.nonce and token_response.id_token:
            decoded = jwt_codec.decode(token_response.id_token)
            validate_nonce(token_request.nonce, decoded.claim("nonce"))

        logger.info(f"Token request ({form_data['grant_type']}) successful")
        return token_response

    def _apply_client_auth(
        self,
        token_request: TokenRequest,
        form_data: dict[str, str],
        headers: httpx.Headers,
    ) -> None:
        auth = token_request.client_auth

        if isinstance(auth, NoClientAuth):
            return

        if isinstance(auth, ClientSecretBasic):
            credentials = (
                f"{token_request.client_id}:{auth.client_secret.get_secret_value()}"
            )
            encoded = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {encoded}"
            return

        if isinstance(auth, ClientSecretPost):
            form_data["client_secret"] = auth.client_secret.get_secret_value()
            return

        if isinstance(auth, ClientSecretJwt):
            signing_key = SharedSecret(
                secret=auth.client_secret, double_encode=auth.double_encode
            )
            custom_claims = auth.custom_claims
        elif isinstance(auth, PrivateKeyJwt):
            signing_key = auth.signing_key
            custom_claims = auth.custom_claims
        else:
            raise TypeError(f"Unsupported client authentication: {auth!r}")

        assertion = self._assertion_builder.build(
            issuer=token_request.client_id,
            subject=token_request.client_id,
            audience=token_request.token_endpoint,
            signing_key=signing_key,
            custom_claims=custom_claims,
        )
        form_data.update(assertion.to_form_data())

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()
