"""OAuth 2.0 / OpenID Connect authorization endpoint orchestration.

Coordinates one authorization request from start to finish: protocol
detection, state and nonce, PKCE, URL assembly, the interactive step
(with a loopback receiver for form_post), and parsing and validation of
whatever the authorization server sent back.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import parse_qsl, unquote_plus, urlsplit

from grantflow.interaction import InteractiveUserAgent, LoopbackReceiver
from grantflow.models.errors import (
    AuthorizationError,
    LoopbackTimeoutError,
    OAuth2Error,
    ProtocolError,
)
from grantflow.models.flow import (
    AuthorizationRequestState,
    AuthorizationResult,
    AuthProtocol,
    FlowState,
    ResponseMode,
    detect_protocol,
    scope_values,
)
from grantflow.primitives import jwt as jwt_codec
from grantflow.primitives.pkce import PKCEManager
from grantflow.services.security import (
    generate_nonce,
    generate_state,
    validate_nonce,
    validate_state,
)
from grantflow.settings import ClientSettings

logger = logging.getLogger(__name__)

RESULT_FIELDS = (
    "code",
    "access_token",
    "id_token",
    "token_type",
    "scope",
    "expires_in",
)
ERROR_FIELDS = ("error", "error_description", "error_uri")
FORM_POST_RESPONSE_FIELDS = ("code", "access_token", "id_token")


def completion_pattern(redirect_uri: str | None) -> re.Pattern[str]:
    """Pattern for the location that ends the interactive step.

    Matches the redirect URI followed by a response carrying a code, tokens
    or an error, or the bare redirect URI.
    """
    response = r"[?#&].*(?:code|error|token)="
    if not redirect_uri:
        return re.compile(response)
    return re.compile(rf"^{re.escape(redirect_uri)}(?:{response}.*|/?)$")


class OAuth2FlowManager:
    """Orchestrates authorization requests against an authorization endpoint.

    A request moves through building, awaiting user interaction, parsing
    the response, and ends validated or failed. Handles:
    - OAuth vs OpenID Connect protocol detection
    - State (CSRF) and nonce (replay) generation and validation
    - PKCE parameter generation for code flows
    - query, fragment and form_post response modes
    """

    def __init__(
        self,
        user_agent: InteractiveUserAgent,
        loopback_receiver: LoopbackReceiver | None = None,
        settings: ClientSettings | None = None,
    ):
        """Initialize the flow manager.

        Args:
            user_agent: Interactive user agent that performs the redirect
            loopback_receiver: Listener for form_post responses
            settings: Client settings, loaded from the environment if omitted
        """
        self._user_agent = user_agent
        self._loopback_receiver = loopback_receiver
        self._settings = settings or ClientSettings()
        self._pkce_manager = PKCEManager()

    def build_request(
        self,
        authorization_endpoint: str,
        client_id: str,
        response_type: str = "code",
        redirect_uri: str | None = None,
        scope: str | None = None,
        response_mode: ResponseMode | str | None = None,
        custom_parameters: Mapping[str, str] | None = None,
        use_pkce: bool = True,
    ) -> AuthorizationRequestState:
        """Build the authorization request state.

        nonce, state, code_challenge, code_challenge_method and code_verifier
        supplied in custom_parameters are used instead of generated values.

        Args:
            authorization_endpoint: Authorization endpoint URL
            client_id: Client identifier
            response_type: "code", "token", "id_token", "none" or a
                space-separated combination
            redirect_uri: Redirect URI registered for the client
            scope: Space-separated scopes
            response_mode: query, fragment or form_post
            custom_parameters: Extra request parameters, sent in order
            use_pkce: Attach a PKCE challenge to code requests

        Returns:
            AuthorizationRequestState ready to be sent
        """
        custom = dict(custom_parameters or {})
        if response_mode is not None:
            response_mode = ResponseMode(response_mode)

        protocol = detect_protocol(response_type, scope)
        nonce = None
        if protocol is AuthProtocol.OIDC:
            if "openid" not in scope_values(scope):
                logger.warning("OpenID Connect request without openid scope, adding it")
                scope = f"{scope} openid" if scope else "openid"
            nonce = custom.get("nonce") or generate_nonce()

        state = custom.get("state") or generate_state()

        code_challenge = code_challenge_method = code_verifier = None
        if use_pkce and "code" in response_type.split():
            if custom.get("code_challenge"):
                code_challenge = custom["code_challenge"]
                code_challenge_method = custom.get("code_challenge_method", "S256")
                code_verifier = custom.get("code_verifier")
            else:
                if custom.get("code_verifier"):
                    pkce = self._pkce_manager.derive(custom["code_verifier"])
                else:
                    pkce = self._pkce_manager.generate()
                code_challenge = pkce.code_challenge
                code_challenge_method = pkce.code_challenge_method
                code_verifier = pkce.code_verifier

        request = AuthorizationRequestState(
            authorization_endpoint=authorization_endpoint,
            client_id=client_id,
            response_type=response_type,
            state=state,
            protocol=protocol,
            redirect_uri=redirect_uri,
            scope=scope,
            response_mode=response_mode,
            nonce=nonce,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            code_verifier=code_verifier,
            custom_parameters=tuple(custom.items()),
        )
        logger.debug(
            f"Built {protocol.value} authorization request for client {client_id} "
            f"(response_type={response_type}, "
            f"pkce={code_challenge_method or 'none'})"
        )
        return request

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
        """Run a complete authorization request.

        Returns:
            AuthorizationResult with the code and/or tokens

        Raises:
            AuthorizationError: If the authorization server reported an error
            StateMismatchError: If the returned state differs from the one sent
            NonceMismatchError: If the id_token nonce differs from the one sent
            LoopbackTimeoutError: If no form_post arrived in time
            ProtocolError: If the response matched no expected shape
        """
        logger.debug(f"Authorization flow state: {FlowState.BUILDING.value}")
        request = self.build_request(
            authorization_endpoint,
            client_id,
            response_type=response_type,
            redirect_uri=redirect_uri,
            scope=scope,
            response_mode=response_mode,
            custom_parameters=custom_parameters,
            use_pkce=use_pkce,
        )

        try:
            logger.debug(
                f"Authorization flow state: {FlowState.AWAITING_USER_INTERACTION.value}"
            )
            if request.is_form_post:
                response = await self._interact_form_post(request)
            else:
                response = await self._interact(request)

            logger.debug(
                f"Authorization flow state: {FlowState.PARSING_RESPONSE.value}"
            )
            result = self.handle_authorization_response(request, response)

        except OAuth2Error as e:
            logger.debug(f"Authorization flow state: {FlowState.FAILED.value} ({e})")
            raise

        logger.info(f"Authorization request for client {client_id} validated")
        return result

    def handle_authorization_response(
        self, request: AuthorizationRequestState, response: str
    ) -> AuthorizationResult:
        """Parse and validate what came back from the authorization endpoint.

        Args:
            request: The request state the response answers
            response: Final redirect location, or the form_post body

        Returns:
            Validated AuthorizationResult

        Raises:
            AuthorizationError, StateMismatchError, NonceMismatchError,
            ProtocolError
        """
        if request.is_form_post:
            return self._handle_form_post_body(request, response)

        parts = urlsplit(response)
        query, fragment = parts.query, parts.fragment

        query_params = dict(parse_qsl(query, keep_blank_values=True))

        if "code" in query_params:
            params = query_params
            if not request.is_oidc:
                params = {
                    k: v
                    for k, v in params.items()
                    if k not in ("access_token", "id_token")
                }
        elif "error" in query_params:
            self._raise_authorization_error(query_params)
        elif "token" in fragment or "error=" in fragment:
            params = self._parse_fragment(fragment)
            if "error" in params:
                self._raise_authorization_error(params)
        else:
            raise ProtocolError("Invalid response received from authorization endpoint")

        return self._build_result(request, params)

    def _handle_form_post_body(
        self, request: AuthorizationRequestState, body: str
    ) -> AuthorizationResult:
        params = dict(parse_qsl(body, keep_blank_values=True))
        if "error" in params:
            self._raise_authorization_error(params)
        if not any(key in params for key in FORM_POST_RESPONSE_FIELDS):
            raise ProtocolError("Invalid form_post body received on redirect URI")
        return self._build_result(request, params)

    async def _interact(self, request: AuthorizationRequestState) -> str:
        pattern = completion_pattern(request.redirect_uri)
        location = await self._user_agent.navigate(
            request.build_authorization_url(),
            pattern,
            user_agent=self._settings.user_agent,
        )
        if not location or not pattern.search(location):
            raise ProtocolError(
                "User interaction ended without reaching the redirect URI"
            )
        return location

    async def _interact_form_post(self, request: AuthorizationRequestState) -> str:
        if not request.redirect_uri:
            raise ValueError("form_post response mode requires a redirect_uri")
        if self._loopback_receiver is None:
            raise ValueError("form_post response mode requires a loopback receiver")

        receiver = asyncio.create_task(
            self._loopback_receiver.listen(request.redirect_uri)
        )
        try:
            await asyncio.sleep(self._settings.loopback_startup_grace)
            await self._user_agent.navigate(
                request.build_authorization_url(),
                completion_pattern(request.redirect_uri),
                user_agent=self._settings.user_agent,
            )
            return await asyncio.wait_for(
                receiver, timeout=self._settings.loopback_timeout
            )
        except asyncio.TimeoutError as e:
            raise LoopbackTimeoutError(
                f"No form_post response received on {request.redirect_uri} "
                f"within {self._settings.loopback_timeout} seconds"
            ) from e
        finally:
            if not receiver.done():
                receiver.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await receiver

    def _parse_fragment(self, fragment: str) -> dict[str, str]:
        params: dict[str, str] = {}
        for pair in re.split(r"[&#]", fragment):
            if not pair:
                continue
            key, _, value = pair.partition("=")
            params[unquote_plus(key)] = unquote_plus(value)
        return params

    def _raise_authorization_error(self, params: Mapping[str, str]) -> None:
        extra = {
            k: v for k, v in params.items() if k not in ERROR_FIELDS and k != "state"
        }
        logger.warning(
            f"Authorization endpoint returned error: {params['error']} - "
            f"{params.get('error_description')}"
        )
        raise AuthorizationError(
            error=params["error"],
            error_description=params.get("error_description"),
            error_uri=params.get("error_uri"),
            extra=extra,
        )

    def _build_result(
        self, request: AuthorizationRequestState, params: Mapping[str, str]
    ) -> AuthorizationResult:
        validate_state(request.state, params.get("state"))

        id_token = params.get("id_token")
        if request.is_oidc and id_token:
            decoded = jwt_codec.decode(id_token)
            validate_nonce(request.nonce or "", decoded.claim("nonce"))

        expires_in = None
        expiry_datetime = None
        if params.get("expires_in"):
            try:
                expires_in = int(params["expires_in"])
            except ValueError as e:
                raise ProtocolError(
                    f"Invalid expires_in value: {params['expires_in']!r}"
                ) from e
            expiry_datetime = datetime.now(timezone.utc) + timedelta(
                seconds=expires_in
            )

        extra: dict[str, Any] = {
            k: v for k, v in params.items() if k not in RESULT_FIELDS and k != "state"
        }

        result = AuthorizationResult(
            client_id=request.client_id,
            code=params.get("code"),
            access_token=params.get("access_token"),
            id_token=id_token,
            token_type=params.get("token_type"),
            scope=params.get("scope"),
            nonce=request.nonce if request.is_oidc else None,
            code_verifier=request.code_verifier if request.uses_code else None,
            redirect_uri=request.redirect_uri if request.uses_code else None,
            expires_in=expires_in,
            expiry_datetime=expiry_datetime,
            extra=extra,
        )
        logger.debug(f"Authorization flow state: {FlowState.VALIDATED.value}")
        return result
