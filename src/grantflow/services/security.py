"""Security utilities for OAuth 2.0 / OIDC flows.

Provides state and nonce generation plus the constant-time comparisons used
to validate them when the authorization server echoes them back.
"""

from __future__ import annotations

import secrets

from grantflow.models.errors import NonceMismatchError, StateMismatchError
from grantflow.primitives.entropy import random_string

STATE_MIN_LENGTH = 16
STATE_MAX_LENGTH = 21
NONCE_MIN_LENGTH = 32
NONCE_MAX_LENGTH = 64


def generate_state() -> str:
    """Generate a random state parameter for CSRF protection.

    Returns:
        Random string of 16-21 unreserved characters
    """
    return random_string(STATE_MIN_LENGTH, STATE_MAX_LENGTH)


def generate_nonce() -> str:
    """Generate a random nonce to bind an id_token to this request.

    Returns:
        Random string of 32-64 unreserved characters
    """
    return random_string(NONCE_MIN_LENGTH, NONCE_MAX_LENGTH)


def _equal(expected: str, actual: str | None) -> bool:
    if actual is None:
        return False
    return secrets.compare_digest(
        expected.encode("utf-8"), str(actual).encode("utf-8")
    )


def validate_state(expected: str, actual: str | None) -> None:
    """Validate the returned state parameter matches the one sent.

    Raises:
        StateMismatchError: If the state is missing or different
    """
    if not _equal(expected, actual):
        raise StateMismatchError("State parameter mismatch - possible CSRF attack")


def validate_nonce(expected: str, actual: str | None) -> None:
    """Validate an id_token nonce claim matches the request nonce.

    Raises:
        NonceMismatchError: If the nonce is missing or different
    """
    if not _equal(expected, actual):
        raise NonceMismatchError("id_token nonce mismatch - possible replay attack")
