"""High-level OAuth 2.0 / OpenID Connect client.

Wires the authorization endpoint orchestration, token endpoint client,
device authorization client, discovery and signature verification together
behind one object with shared settings.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from pathlib import Path

import httpx
from cryptography import x509
from pydantic import SecretStr

from grantflow.interaction import (
    InteractiveUserAgent,
    LoopbackReceiver,
    ManualUserAgent,
    StarletteLoopbackReceiver,
)
from grantflow.models.device import DeviceAuthorizationResponse
from grantflow.models.discovery import JsonWebKeySet, OpenIDProviderMetadata
from grantflow.models.errors import AuthorizationError
from grantflow.models.flow import AuthorizationResult, ResponseMode
from grantflow.models.tokens import (
    AuthorizationCodeGrant,
    ClientAuth,
    DeviceCodeGrant,
    NoClientAuth,
    TokenRequest,
    TokenResponse,
)
from grantflow.primitives.discovery import OpenIDDiscovery
from grantflow.services.assertions import JwtAssertionBuilder
from grantflow.services.device import OAuth2DeviceAuthorization
from grantflow.services.flow import OAuth2FlowManager
from grantflow.services.tokens import OAuth2TokenManager
from grantflow.services.verification import JwtSignatureVerifier
from grantflow.settings import ClientSettings

logger = logging.getLogger(__name__)

DEVICE_CODE_DEFAULT_LIFETIME = 900
SLOW_DOWN_INCREMENT = 5


class OAuth2Client:
    """OAuth 2.0 / OpenID Connect client for arbitrary authorization servers."""

    def __init__(
        self,
        user_agent: InteractiveUserAgent | None = None,
        loopback_receiver: LoopbackReceiver | None = None,
        settings: ClientSettings | None = None,
    ):
        """Initialize OAuth client.

        Args:
            user_agent: Interactive user agent for authorization requests
            loopback_receiver: Listener for form_post responses
            settings: Client settings, loaded from the environment if omitted
        """
        self.settings = settings or ClientSettings()
        timeout = self.settings.http_timeout

        self.discovery = OpenIDDiscovery(timeout=timeout)
        self.flow_manager = OAuth2FlowManager(
            user_agent or ManualUserAgent(),
            loopback_receiver or StarletteLoopbackReceiver(),
            settings=self.settings,
        )
        self.token_manager = OAuth2TokenManager(
            timeout=timeout,
            assertion_builder=JwtAssertionBuilder(
                lifetime=self.settings.assertion_lifetime
            ),
        )
        self.device_authorization = OAuth2DeviceAuthorization(timeout=timeout)
        self.verifier = JwtSignatureVerifier(
            discovery=self.discovery,
            hmac_double_encode=self.settings.hmac_double_encode,
        )
        self._sleep = asyncio.sleep

    async def discover(self, issuer: str) -> OpenIDProviderMetadata:
        """Fetch OpenID Provider metadata for an issuer."""
        return await self.discovery.discover(issuer)

    async def authorize(
        self,
        authorization_endpoint: str,
        client_id: str,
        response_type: str = "code",
        redirect_uri: str | None = None,
        scope: str | None = None,
        response_mode: ResponseMode | str | None = None,
        custom_parameters: Mapping[str, str] | None = None,
        use_pkce: bool = True,
    ) -> AuthorizationResult:
        """Run an authorization request through the user agent."""
        return await self.flow_manager.authorize(
            authorization_endpoint,
            client_id,
            response_type=response_type,
            redirect_uri=redirect_uri,
            scope=scope,
            response_mode=response_mode,
            custom_parameters=custom_parameters,
            use_pkce=use_pkce,
        )

    async def exchange_code(
        self,
        token_endpoint: str,
        authorization: AuthorizationResult,
        client_auth: ClientAuth | None = None,
        scope: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> TokenResponse:
        """Exchange the code from an authorization result for tokens.

        The code_verifier, redirect_uri and nonce from the authorization
        request are carried over so the exchange matches it.
        """
        if not authorization.has_code():
            raise ValueError("Authorization result does not contain a code")

        return await self.token_manager.request_token(
            TokenRequest(
                token_endpoint=token_endpoint,
                client_id=authorization.client_id,
                grant=AuthorizationCodeGrant(
                    code=authorization.code,
                    code_verifier=authorization.code_verifier,
                ),
                client_auth=client_auth or NoClientAuth(),
                redirect_uri=authorization.redirect_uri,
                scope=scope,
                nonce=authorization.nonce,
                headers=headers or {},
            )
        )

    async def request_token(self, token_request: TokenRequest) -> TokenResponse:
        """Send any token request."""
        return await self.token_manager.request_token(token_request)

    async def start_device_authorization(
        self,
        device_authorization_endpoint: str,
        client_id: str,
        scope: str | None = None,
    ) -> DeviceAuthorizationResponse:
        """Request a device code and the user code to show the user."""
        return await self.device_authorization.request_device_code(
            device_authorization_endpoint, client_id, scope=scope
        )

    async def poll_device_token(
        self,
        token_endpoint: str,
        client_id: str,
        device: DeviceAuthorizationResponse,
        client_auth: ClientAuth | None = None,
        scope: str | None = None,
    ) -> TokenResponse:
        """Poll the token endpoint until the user completes device authorization.

        Follows RFC 8628 Section 3.5: keeps polling on authorization_pending,
        backs off by 5 seconds on slow_down, and stops on any other error or
        once the device code has expired.

        Raises:
            AuthorizationError: If the server rejected the request or the
                device code expired
        """
        interval = device.interval or self.settings.device_poll_interval
        lifetime = device.expires_in or DEVICE_CODE_DEFAULT_LIFETIME
        deadline = time.monotonic() + lifetime

        token_request = TokenRequest(
            token_endpoint=token_endpoint,
            client_id=client_id,
            grant=DeviceCodeGrant(device_code=device.device_code),
            client_auth=client_auth or NoClientAuth(),
            scope=scope,
        )

        while time.monotonic() < deadline:
            await self._sleep(interval)
            try:
                return await self.token_manager.request_token(token_request)
            except httpx.HTTPStatusError as e:
                error = _oauth_error(e.response)
                if error.get("error") == "authorization_pending":
                    logger.debug("Device authorization pending")
                    continue
                if error.get("error") == "slow_down":
                    interval += SLOW_DOWN_INCREMENT
                    logger.debug(f"Device polling slowed down to {interval}s")
                    continue
                if "error" in error:
                    raise AuthorizationError(
                        error=error["error"],
                        error_description=error.get("error_description"),
                        error_uri=error.get("error_uri"),
                    ) from e
                raise

        raise AuthorizationError(
            error="expired_token",
            error_description="Device code expired before authorization completed",
        )

    async def fetch_signing_keys(self, issuer: str) -> JsonWebKeySet:
        """Fetch an issuer's signing keys for repeated verify_token calls."""
        return await self.verifier.fetch_signing_keys(issuer)

    async def verify_token(
        self,
        token: str,
        signing_certificate: x509.Certificate | str | Path | None = None,
        client_secret: str | SecretStr | None = None,
        jwks: JsonWebKeySet | None = None,
    ) -> bool:
        """Verify a JWT signature."""
        return await self.verifier.verify(
            token,
            signing_certificate=signing_certificate,
            client_secret=client_secret,
            jwks=jwks,
        )

    async def close(self) -> None:
        """Close all service connections."""
        await self.discovery.close()
        await self.token_manager.close()
        await self.device_authorization.close()


def _oauth_error(response: httpx.Response) -> dict[str, str]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
