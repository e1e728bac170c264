"""Client assertion JWTs for private_key_jwt and client_secret_jwt (RFC 7523).

The signing input is built by hand rather than through a JOSE library so
that the exact bytes signed are the Base64URL header and payload joined by
a dot, and so the legacy HMAC signature encoding can be reproduced.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import time
import uuid
from collections.abc import Mapping
from typing import Any

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from grantflow.models.jwt import ClientAssertion
from grantflow.models.keys import RsaSigningKey, SharedSecret, SigningKey
from grantflow.primitives import base64url
from grantflow.services.certificates import certificate_thumbprint
from grantflow.settings import ASSERTION_LIFETIME_DEFAULT, CLIENT_ASSERTION_TYPE

logger = logging.getLogger(__name__)


def encode_hmac_signature(signing_input: str, key: SharedSecret) -> str:
    """HMAC-SHA256 over the signing input, Base64URL encoded.

    With key.double_encode the digest is first standard-Base64 encoded and
    that text is then Base64URL encoded.
    """
    digest = hmac.new(
        key.key_bytes(), signing_input.encode("utf-8"), hashlib.sha256
    ).digest()
    if key.double_encode:
        return base64url.encode(base64.b64encode(digest).decode("ascii"))
    return base64url.encode(digest)


class JwtAssertionBuilder:
    """Builds signed client assertions for token endpoint authentication."""

    def __init__(self, lifetime: int = ASSERTION_LIFETIME_DEFAULT):
        """Initialize the builder.

        Args:
            lifetime: Seconds between iat and exp
        """
        self.lifetime = lifetime

    def build(
        self,
        issuer: str,
        subject: str,
        audience: str,
        signing_key: SigningKey,
        jwt_id: str | None = None,
        custom_claims: Mapping[str, Any] | None = None,
    ) -> ClientAssertion:
        """Build and sign a client assertion.

        Args:
            issuer: iss claim, normally the client_id
            subject: sub claim, normally the client_id
            audience: aud claim, the token endpoint URL
            signing_key: RSA key (optionally with certificate) or shared secret
            jwt_id: jti claim, a new UUID when omitted
            custom_claims: Extra claims merged over the standard ones

        Returns:
            ClientAssertion holding the compact JWT and its parts
        """
        header = self._build_header(signing_key)

        issued_at = int(time.time())
        payload: dict[str, Any] = {
            "aud": audience,
            "exp": issued_at + self.lifetime,
            "iat": issued_at,
            "nbf": issued_at,
            "iss": issuer,
            "sub": subject,
            "jti": jwt_id or str(uuid.uuid4()),
        }
        if custom_claims:
            payload.update(custom_claims)

        signing_input = (
            f"{base64url.encode(json.dumps(header, separators=(',', ':')))}."
            f"{base64url.encode(json.dumps(payload, separators=(',', ':')))}"
        )
        signature = self._sign(signing_input, signing_key)

        logger.debug(
            f"Built {header['alg']} client assertion for {issuer} "
            f"with audience {audience}"
        )
        return ClientAssertion(
            client_assertion_jwt=f"{signing_input}.{signature}",
            client_assertion_type=CLIENT_ASSERTION_TYPE,
            header=header,
            payload=payload,
        )

    def _build_header(self, signing_key: SigningKey) -> dict[str, Any]:
        if isinstance(signing_key, SharedSecret):
            # Names the HMAC algorithm actually used. Servers that expect the
            # legacy RS256 header on HMAC assertions will reject these.
            return {"alg": "HS256", "typ": "JWT"}

        header: dict[str, Any] = {"alg": "RS256", "typ": "JWT"}
        if signing_key.certificate is not None:
            header["x5t"] = base64url.encode(
                certificate_thumbprint(signing_key.certificate)
            )
        if signing_key.kid:
            header["kid"] = signing_key.kid
        return header

    def _sign(self, signing_input: str, signing_key: SigningKey) -> str:
        if isinstance(signing_key, SharedSecret):
            return encode_hmac_signature(signing_input, signing_key)

        if not isinstance(signing_key, RsaSigningKey):
            raise TypeError(f"Unsupported signing key: {type(signing_key).__name__}")

        signature = signing_key.private_key.sign(
            signing_input.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256()
        )
        return base64url.encode(signature)
