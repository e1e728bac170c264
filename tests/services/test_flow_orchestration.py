"""Tests for the authorization endpoint orchestration.

High-impact tests covering the complete authorization request:
- Protocol detection, state, nonce and PKCE handling
- Authorization URL assembly and custom parameters
- query, fragment and form_post response parsing
- State and nonce validation and structured errors
"""

import asyncio
import json
import re
from urllib.parse import parse_qs, parse_qsl, urlparse

import pytest

from grantflow.models.errors import (
    AuthorizationError,
    LoopbackTimeoutError,
    NonceMismatchError,
    ProtocolError,
    StateMismatchError,
)
from grantflow.models.flow import AuthProtocol, ResponseMode
from grantflow.primitives import base64url
from grantflow.primitives.pkce import PKCEManager
from grantflow.services.flow import OAuth2FlowManager, completion_pattern
from grantflow.settings import ClientSettings

AUTHORIZE = "https://login.example.com/authorize"
REDIRECT = "http://localhost:8400/callback"


def _id_token(nonce: str) -> str:
    header = base64url.encode(json.dumps({"alg": "RS256", "typ": "JWT"}))
    payload = base64url.encode(json.dumps({"sub": "user-1", "nonce": nonce}))
    return f"{header}.{payload}.c2lnbmF0dXJl"


class FakeUserAgent:
    """Answers the authorization URL with a location built by responder."""

    def __init__(self, responder=None):
        self.responder = responder
        self.calls: list[tuple[str, re.Pattern[str], str | None]] = []

    async def navigate(self, uri, completion_pattern, *, user_agent=None):
        self.calls.append((uri, completion_pattern, user_agent))
        params = dict(parse_qsl(urlparse(uri).query))
        return self.responder(params) if self.responder else None


class FakeLoopbackReceiver:
    def __init__(self, body_from=None, user_agent=None):
        self.body_from = body_from
        self.user_agent = user_agent
        self.listening_on: str | None = None
        self.cancelled = False

    async def listen(self, uri_prefix):
        self.listening_on = uri_prefix
        try:
            # Wait for the user agent to have been launched
            while self.user_agent is not None and not self.user_agent.calls:
                await asyncio.sleep(0)
            if self.body_from is None:
                await asyncio.Event().wait()
            uri = self.user_agent.calls[-1][0]
            return self.body_from(dict(parse_qsl(urlparse(uri).query)))
        except asyncio.CancelledError:
            self.cancelled = True
            raise


def _settings(**overrides) -> ClientSettings:
    values = {"loopback_startup_grace": 0, "loopback_timeout": 0.2}
    values.update(overrides)
    return ClientSettings(**values)


class TestBuildRequest:
    def setup_method(self):
        self.flow_manager = OAuth2FlowManager(FakeUserAgent(), settings=_settings())

    def test_code_with_openid_scope_is_oidc(self):
        # Act
        request = self.flow_manager.build_request(
            AUTHORIZE, "client-1", "code", REDIRECT, scope="openid profile"
        )

        # Assert
        assert request.protocol is AuthProtocol.OIDC
        assert 32 <= len(request.nonce) <= 64
        assert request.scope == "openid profile"
        assert request.scope.split().count("openid") == 1

    def test_token_response_is_oauth_without_nonce_or_pkce(self):
        request = self.flow_manager.build_request(
            AUTHORIZE, "client-1", "token", REDIRECT, scope="read", use_pkce=True
        )

        assert request.protocol is AuthProtocol.OAUTH
        assert request.nonce is None
        assert request.code_challenge is None
        assert request.code_verifier is None

    def test_id_token_response_adds_openid_scope(self):
        request = self.flow_manager.build_request(
            AUTHORIZE, "client-1", "id_token token", REDIRECT, scope="profile"
        )

        assert request.protocol is AuthProtocol.OIDC
        assert request.scope.split() == ["profile", "openid"]
        assert request.nonce

    def test_code_without_openid_is_oauth_with_pkce(self):
        request = self.flow_manager.build_request(
            AUTHORIZE, "client-1", "code", REDIRECT, scope="read"
        )

        assert request.protocol is AuthProtocol.OAUTH
        assert request.nonce is None
        assert request.code_challenge_method == "S256"
        assert (
            PKCEManager().derive(request.code_verifier).code_challenge
            == request.code_challenge
        )

    def test_pkce_can_be_disabled(self):
        request = self.flow_manager.build_request(
            AUTHORIZE, "client-1", "code", REDIRECT, use_pkce=False
        )

        assert request.code_challenge is None

    def test_generated_state(self):
        request = self.flow_manager.build_request(AUTHORIZE, "client-1")

        assert 16 <= len(request.state) <= 21

    def test_caller_supplied_state_nonce_and_pkce(self):
        # Act
        request = self.flow_manager.build_request(
            AUTHORIZE,
            "client-1",
            "code id_token",
            REDIRECT,
            scope="openid",
            custom_parameters={
                "state": "abc123",
                "nonce": "N1",
                "code_challenge": "challenge",
                "code_challenge_method": "plain",
                "code_verifier": "challenge",
            },
        )

        # Assert
        assert request.state == "abc123"
        assert request.nonce == "N1"
        assert request.code_challenge == "challenge"
        assert request.code_challenge_method == "plain"
        assert request.code_verifier == "challenge"

    def test_caller_supplied_verifier_derives_challenge(self):
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"

        request = self.flow_manager.build_request(
            AUTHORIZE, "client-1", custom_parameters={"code_verifier": verifier}
        )

        assert request.code_challenge == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"
        assert request.code_verifier == verifier

    def test_authorization_url_parameter_order(self):
        # Arrange
        request = self.flow_manager.build_request(
            AUTHORIZE,
            "client-1",
            "code",
            REDIRECT,
            scope="openid profile",
            response_mode="form_post",
            custom_parameters={
                "prompt": "select_account",
                "login_hint": "user@example.com",
                "state": "abc123",
            },
        )

        # Act
        url = request.build_authorization_url()

        # Assert
        keys = [key for key, _ in parse_qsl(urlparse(url).query)]
        assert keys == [
            "response_type",
            "client_id",
            "state",
            "redirect_uri",
            "scope",
            "nonce",
            "code_challenge",
            "code_challenge_method",
            "prompt",
            "login_hint",
            "response_mode",
        ]
        query = parse_qs(urlparse(url).query)
        assert query["state"] == ["abc123"]
        assert query["login_hint"] == ["user@example.com"]
        assert query["response_mode"] == ["form_post"]
        assert url.startswith(f"{AUTHORIZE}?")

    @pytest.mark.parametrize("response_mode", [None, "query", "fragment"])
    def test_response_mode_only_sent_for_form_post(self, response_mode):
        request = self.flow_manager.build_request(
            AUTHORIZE, "client-1", "code", REDIRECT, response_mode=response_mode
        )

        query = parse_qs(urlparse(request.build_authorization_url()).query)

        assert "response_mode" not in query


class TestCompletionPattern:
    @pytest.mark.parametrize(
        "location",
        [
            f"{REDIRECT}?code=abc&state=xyz",
            f"{REDIRECT}?error=access_denied",
            f"{REDIRECT}#access_token=abc&state=xyz",
            f"{REDIRECT}?state=xyz&code=abc",
            REDIRECT,
        ],
    )
    def test_matches_redirect_responses(self, location):
        assert completion_pattern(REDIRECT).search(location)

    @pytest.mark.parametrize(
        "location",
        [
            "https://login.example.com/authorize?client_id=abc",
            "http://localhost:8400/other?code=abc",
            f"{REDIRECT}?foo=bar",
        ],
    )
    def test_ignores_other_locations(self, location):
        assert not completion_pattern(REDIRECT).search(location)


class TestAuthorize:
    async def test_code_flow_returns_token_exchange_inputs(self):
        # Arrange
        user_agent = FakeUserAgent(
            lambda p: f"{REDIRECT}?code=auth-code-1&state={p['state']}&session_state=s1"
        )
        flow_manager = OAuth2FlowManager(user_agent, settings=_settings())

        # Act
        result = await flow_manager.authorize(
            AUTHORIZE, "client-1", "code", REDIRECT, scope="read"
        )

        # Assert
        sent = dict(parse_qsl(urlparse(user_agent.calls[0][0]).query))
        assert result.code == "auth-code-1"
        assert result.client_id == "client-1"
        assert result.redirect_uri == REDIRECT
        assert (
            PKCEManager().derive(result.code_verifier).code_challenge
            == sent["code_challenge"]
        )
        assert result.extra == {"session_state": "s1"}
        assert not hasattr(result, "state")

    async def test_user_agent_override_is_passed_through(self):
        user_agent = FakeUserAgent(lambda p: f"{REDIRECT}?code=c&state={p['state']}")
        flow_manager = OAuth2FlowManager(
            user_agent, settings=_settings(user_agent="grantflow-tests/1.0")
        )

        await flow_manager.authorize(AUTHORIZE, "client-1", redirect_uri=REDIRECT)

        assert user_agent.calls[0][2] == "grantflow-tests/1.0"

    async def test_state_mismatch_is_rejected(self):
        user_agent = FakeUserAgent(lambda p: f"{REDIRECT}?code=c&state=other")
        flow_manager = OAuth2FlowManager(user_agent, settings=_settings())

        with pytest.raises(StateMismatchError):
            await flow_manager.authorize(
                AUTHORIZE,
                "client-1",
                redirect_uri=REDIRECT,
                custom_parameters={"state": "abc123"},
            )

    async def test_missing_state_is_rejected(self):
        user_agent = FakeUserAgent(lambda p: f"{REDIRECT}?code=c")
        flow_manager = OAuth2FlowManager(user_agent, settings=_settings())

        with pytest.raises(StateMismatchError):
            await flow_manager.authorize(AUTHORIZE, "client-1", redirect_uri=REDIRECT)

    async def test_query_error_is_structured(self):
        # Arrange
        user_agent = FakeUserAgent(
            lambda p: (
                f"{REDIRECT}?error=access_denied"
                "&error_description=User%20cancelled"
                f"&state={p['state']}"
            )
        )
        flow_manager = OAuth2FlowManager(user_agent, settings=_settings())

        # Act
        with pytest.raises(AuthorizationError) as exc_info:
            await flow_manager.authorize(AUTHORIZE, "client-1", redirect_uri=REDIRECT)

        # Assert
        assert exc_info.value.error == "access_denied"
        assert exc_info.value.error_description == "User cancelled"
        assert exc_info.value.error_uri is None
        assert "state" not in exc_info.value.to_dict()

    async def test_implicit_fragment_tokens(self):
        # Arrange
        user_agent = FakeUserAgent(
            lambda p: (
                f"{REDIRECT}#access_token=at-1&token_type=Bearer"
                f"&expires_in=3600&scope=read%20write&state={p['state']}"
            )
        )
        flow_manager = OAuth2FlowManager(user_agent, settings=_settings())

        # Act
        result = await flow_manager.authorize(
            AUTHORIZE, "client-1", "token", REDIRECT, scope="read write"
        )

        # Assert
        assert result.access_token == "at-1"
        assert result.token_type == "Bearer"
        assert result.scope == "read write"
        assert result.expires_in == 3600
        assert result.expiry_datetime is not None
        assert result.code_verifier is None
        assert result.redirect_uri is None
        assert result.nonce is None

    async def test_hybrid_keeps_access_token_and_id_token_apart(self):
        # Arrange
        user_agent = FakeUserAgent(
            lambda p: (
                f"{REDIRECT}#code=c1&access_token=at-1"
                f"&id_token={_id_token(p['nonce'])}&state={p['state']}"
            )
        )
        flow_manager = OAuth2FlowManager(user_agent, settings=_settings())

        # Act
        result = await flow_manager.authorize(
            AUTHORIZE, "client-1", "code id_token token", REDIRECT, scope="openid"
        )

        # Assert
        assert result.code == "c1"
        assert result.access_token == "at-1"
        assert result.id_token.startswith("eyJ")
        assert result.nonce
        assert result.code_verifier

    async def test_oidc_code_query_with_id_token(self):
        user_agent = FakeUserAgent(
            lambda p: (
                f"{REDIRECT}?code=c1&id_token={_id_token(p['nonce'])}"
                f"&state={p['state']}"
            )
        )
        flow_manager = OAuth2FlowManager(user_agent, settings=_settings())

        result = await flow_manager.authorize(
            AUTHORIZE, "client-1", "code", REDIRECT, scope="openid"
        )

        assert result.code == "c1"
        assert result.id_token

    async def test_nonce_mismatch_is_rejected(self):
        # Arrange
        user_agent = FakeUserAgent(
            lambda p: f"{REDIRECT}#id_token={_id_token('N2')}&state={p['state']}"
        )
        flow_manager = OAuth2FlowManager(user_agent, settings=_settings())

        # Act & Assert
        with pytest.raises(NonceMismatchError):
            await flow_manager.authorize(
                AUTHORIZE,
                "client-1",
                "id_token",
                REDIRECT,
                scope="openid",
                custom_parameters={"nonce": "N1"},
            )

    async def test_fragment_error_excludes_state(self):
        user_agent = FakeUserAgent(
            lambda p: (
                f"{REDIRECT}#error=invalid_scope&error_uri=https%3A%2F%2Fdocs"
                f"&state={p['state']}"
            )
        )
        flow_manager = OAuth2FlowManager(user_agent, settings=_settings())

        with pytest.raises(AuthorizationError) as exc_info:
            await flow_manager.authorize(AUTHORIZE, "client-1", "token", REDIRECT)

        assert exc_info.value.error == "invalid_scope"
        assert exc_info.value.error_uri == "https://docs"
        assert "state" not in exc_info.value.extra

    async def test_unrecognized_response_is_protocol_error(self):
        flow_manager = OAuth2FlowManager(FakeUserAgent(), settings=_settings())
        request = flow_manager.build_request(AUTHORIZE, "client-1", "code", REDIRECT)

        with pytest.raises(ProtocolError):
            flow_manager.handle_authorization_response(request, f"{REDIRECT}?foo=bar")

    async def test_closed_interaction_is_protocol_error(self):
        flow_manager = OAuth2FlowManager(FakeUserAgent(), settings=_settings())

        with pytest.raises(ProtocolError):
            await flow_manager.authorize(AUTHORIZE, "client-1", redirect_uri=REDIRECT)


class TestFormPost:
    async def test_receiver_body_is_parsed(self):
        # Arrange
        user_agent = FakeUserAgent(lambda p: REDIRECT)
        receiver = FakeLoopbackReceiver(
            body_from=lambda p: f"code=c1&state={p['state']}", user_agent=user_agent
        )
        flow_manager = OAuth2FlowManager(user_agent, receiver, settings=_settings())

        # Act
        result = await flow_manager.authorize(
            AUTHORIZE,
            "client-1",
            "code",
            REDIRECT,
            response_mode=ResponseMode.FORM_POST,
        )

        # Assert
        assert receiver.listening_on == REDIRECT
        assert result.code == "c1"
        sent = parse_qs(urlparse(user_agent.calls[0][0]).query)
        assert sent["response_mode"] == ["form_post"]

    async def test_silent_receiver_times_out(self):
        # Arrange
        user_agent = FakeUserAgent(lambda p: REDIRECT)
        receiver = FakeLoopbackReceiver(body_from=None)
        flow_manager = OAuth2FlowManager(
            user_agent, receiver, settings=_settings(loopback_timeout=0.05)
        )

        # Act & Assert
        with pytest.raises(LoopbackTimeoutError) as exc_info:
            await flow_manager.authorize(
                AUTHORIZE, "client-1", "code", REDIRECT, response_mode="form_post"
            )

        assert isinstance(exc_info.value, TimeoutError)
        assert receiver.cancelled

    async def test_receiver_is_listening_before_user_agent_starts(self):
        # Arrange
        events: list[str] = []

        class RecordingReceiver:
            async def listen(self, uri_prefix):
                events.append("listen")
                return "code=c1&state=abc123"

        class RecordingUserAgent:
            async def navigate(self, uri, completion_pattern, *, user_agent=None):
                events.append("navigate")
                return REDIRECT

        flow_manager = OAuth2FlowManager(
            RecordingUserAgent(), RecordingReceiver(), settings=_settings()
        )

        # Act
        await flow_manager.authorize(
            AUTHORIZE,
            "client-1",
            "code",
            REDIRECT,
            response_mode="form_post",
            custom_parameters={"state": "abc123"},
        )

        # Assert
        assert events == ["listen", "navigate"]

    async def test_form_post_requires_receiver(self):
        flow_manager = OAuth2FlowManager(FakeUserAgent(), settings=_settings())

        with pytest.raises(ValueError):
            await flow_manager.authorize(
                AUTHORIZE, "client-1", "code", REDIRECT, response_mode="form_post"
            )

    async def test_id_token_body_without_code(self):
        # Arrange
        flow_manager = OAuth2FlowManager(FakeUserAgent(), settings=_settings())
        request = flow_manager.build_request(
            AUTHORIZE,
            "client-1",
            "id_token",
            REDIRECT,
            scope="openid",
            response_mode="form_post",
            custom_parameters={"state": "abc123", "nonce": "N1"},
        )

        # Act
        result = flow_manager.handle_authorization_response(
            request, f"id_token={_id_token('N1')}&state=abc123"
        )

        # Assert
        assert result.id_token.startswith("eyJ")
        assert result.nonce == "N1"
        assert result.code is None

    async def test_id_token_body_nonce_mismatch(self):
        flow_manager = OAuth2FlowManager(FakeUserAgent(), settings=_settings())
        request = flow_manager.build_request(
            AUTHORIZE,
            "client-1",
            "id_token",
            REDIRECT,
            scope="openid",
            response_mode="form_post",
            custom_parameters={"state": "abc123", "nonce": "N1"},
        )

        with pytest.raises(NonceMismatchError):
            flow_manager.handle_authorization_response(
                request, f"id_token={_id_token('N2')}&state=abc123"
            )

    async def test_token_body_without_code(self):
        # Arrange
        user_agent = FakeUserAgent(lambda p: REDIRECT)
        receiver = FakeLoopbackReceiver(
            body_from=lambda p: (
                "access_token=at-1&token_type=Bearer&expires_in=60"
                f"&state={p['state']}"
            ),
            user_agent=user_agent,
        )
        flow_manager = OAuth2FlowManager(user_agent, receiver, settings=_settings())

        # Act
        result = await flow_manager.authorize(
            AUTHORIZE, "client-1", "token", REDIRECT, response_mode="form_post"
        )

        # Assert
        assert result.access_token == "at-1"
        assert result.token_type == "Bearer"
        assert result.expires_in == 60

    async def test_token_body_state_mismatch(self):
        flow_manager = OAuth2FlowManager(FakeUserAgent(), settings=_settings())
        request = flow_manager.build_request(
            AUTHORIZE,
            "client-1",
            "token",
            REDIRECT,
            response_mode="form_post",
            custom_parameters={"state": "abc123"},
        )

        with pytest.raises(StateMismatchError):
            flow_manager.handle_authorization_response(
                request, "access_token=at-1&state=other"
            )

    async def test_error_body_is_structured(self):
        flow_manager = OAuth2FlowManager(FakeUserAgent(), settings=_settings())
        request = flow_manager.build_request(
            AUTHORIZE, "client-1", "id_token", REDIRECT, response_mode="form_post"
        )

        with pytest.raises(AuthorizationError) as exc_info:
            flow_manager.handle_authorization_response(
                request, f"error=login_required&state={request.state}"
            )

        assert exc_info.value.error == "login_required"

    async def test_body_without_response_fields_is_protocol_error(self):
        flow_manager = OAuth2FlowManager(FakeUserAgent(), settings=_settings())
        request = flow_manager.build_request(
            AUTHORIZE, "client-1", "token", REDIRECT, response_mode="form_post"
        )

        with pytest.raises(ProtocolError):
            flow_manager.handle_authorization_response(
                request, f"state={request.state}"
            )
