"""Security-related models for OAuth 2.0 authentication.

Contains PKCE parameters and other cryptographic primitives needed
for secure authorization flows.
"""

from __future__ import annotations

from dataclasses import dataclass, field

PKCE_METHODS = ("S256", "plain")


@dataclass(frozen=True)
class PkceChallenge:
    """PKCE (Proof Key for Code Exchange) parameters (RFC 7636).

    Immutable and generated once per authorization request.
    """

    code_verifier: str = field()
    code_challenge: str = field()
    code_challenge_method: str = field(default="S256")

    def __post_init__(self) -> None:
        if not (43 <= len(self.code_verifier) <= 128):
            raise ValueError("code_verifier must be 43-128 characters")
        if self.code_challenge_method not in PKCE_METHODS:
            raise ValueError(
                f"Unsupported code_challenge_method: {self.code_challenge_method}"
            )
        if (
            self.code_challenge_method == "plain"
            and self.code_challenge != self.code_verifier
        ):
            raise ValueError("plain code_challenge must equal the code_verifier")
