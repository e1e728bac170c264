"""Exception hierarchy for OAuth 2.0 / OpenID Connect client errors.

Provides specific exception types for different failure modes so callers can
report server-side errors with their structured fields intact and treat
security violations (state, nonce) separately from malformed input.
"""

from __future__ import annotations

from typing import Any


class OAuth2Error(Exception):
    """Base exception for all OAuth 2.0 related errors."""

    pass


class DecodeError(OAuth2Error, ValueError):
    """Raised when Base64URL or JWT content cannot be decoded."""

    pass


class InputValidationError(OAuth2Error, ValueError):
    """Raised when input fails a shape check before decoding is attempted."""

    pass


class AuthorizationError(OAuth2Error):
    """Raised when the authorization server reports an error.

    Carries the OAuth 2.0 error triplet as attributes so callers do not have
    to parse the message.
    """

    def __init__(
        self,
        error: str,
        error_description: str | None = None,
        error_uri: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.error = error
        self.error_description = error_description
        self.error_uri = error_uri
        self.extra = dict(extra or {})
        message = f"Authorization failed: {error}"
        if error_description:
            message += f" ({error_description})"
        if error_uri:
            message += f" See: {error_uri}"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"error": self.error}
        if self.error_description is not None:
            data["error_description"] = self.error_description
        if self.error_uri is not None:
            data["error_uri"] = self.error_uri
        data.update(self.extra)
        return data


class StateMismatchError(OAuth2Error):
    """Raised when the returned state does not match the one sent.

    This indicates a possible CSRF attack and is never recoverable.
    """

    pass


class NonceMismatchError(OAuth2Error):
    """Raised when an id_token nonce claim does not match the request nonce."""

    pass


class LoopbackTimeoutError(OAuth2Error, TimeoutError):
    """Raised when the loopback receiver gets no form_post in time."""

    pass


class UnsupportedAlgorithmError(OAuth2Error):
    """Raised when a JWT uses a signing algorithm we cannot verify."""

    pass


class KeyResolutionError(OAuth2Error):
    """Raised when no verification key can be found for a JWT."""

    pass


class CertificateResolutionError(OAuth2Error):
    """Raised when a certificate or key path does not yield usable key material."""

    pass


class ProtocolError(OAuth2Error):
    """Raised when a server response matches none of the expected shapes."""

    pass


class DiscoveryError(OAuth2Error):
    """Raised when OpenID Provider metadata or its key set cannot be fetched."""

    pass
