"""PKCE (Proof Key for Code Exchange) generator.

Implements RFC 7636 parameter generation to prevent authorization code
interception attacks.
"""

from __future__ import annotations

import hashlib
import logging

from grantflow.models.security import PkceChallenge
from grantflow.primitives import base64url
from grantflow.primitives.entropy import UNRESERVED_ALPHABET, random_string

logger = logging.getLogger(__name__)

CODE_VERIFIER_MIN_LENGTH = 43
CODE_VERIFIER_MAX_LENGTH = 128


class PKCEManager:
    """Generates PKCE parameters for authorization code flows.

    This implementation follows RFC 7636 requirements:
    - Uses the S256 code challenge method (SHA256 + base64url)
    - Falls back to the plain method only when SHA256 is unavailable
    - Draws code verifiers from the unreserved character set
    """

    def generate(self, verifier_length: int | None = None) -> PkceChallenge:
        """Generate new PKCE parameters for an authorization request.

        Args:
            verifier_length: Fixed verifier length; random in [43, 128] if omitted

        Returns:
            PkceChallenge: Immutable parameters for the authorization flow
        """
        if verifier_length is None:
            code_verifier = random_string(
                CODE_VERIFIER_MIN_LENGTH, CODE_VERIFIER_MAX_LENGTH, UNRESERVED_ALPHABET
            )
        else:
            if not (
                CODE_VERIFIER_MIN_LENGTH
                <= verifier_length
                <= CODE_VERIFIER_MAX_LENGTH
            ):
                raise ValueError("code_verifier length must be 43-128 characters")
            code_verifier = random_string(verifier_length)

        return self.derive(code_verifier)

    def derive(self, code_verifier: str) -> PkceChallenge:
        """Build the challenge for an existing code verifier.

        RFC 7636 Section 4.2: For S256, the code challenge is
        BASE64URL-ENCODE(SHA256(ASCII(code_verifier))).
        """
        digest = self._sha256(code_verifier.encode("ascii"))
        if digest is None:
            logger.warning("SHA256 unavailable, using plain PKCE code challenge")
            return PkceChallenge(
                code_verifier=code_verifier,
                code_challenge=code_verifier,
                code_challenge_method="plain",
            )

        return PkceChallenge(
            code_verifier=code_verifier,
            code_challenge=base64url.encode(digest),
            code_challenge_method="S256",
        )

    def _sha256(self, data: bytes) -> bytes | None:
        try:
            hasher = hashlib.new("sha256")
        except ValueError:
            return None
        hasher.update(data)
        return hasher.digest()
