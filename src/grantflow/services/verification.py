"""JWT signature verification.

Verifies RS*, PS* and ES* signatures with a supplied certificate or public
key, or with a key resolved from the issuer's published key set, and HMAC
signatures with a shared client secret. The signed bytes are always the
literal "header.payload" substring of the token; re-serializing the decoded
JSON would break verification for servers with a different key order.
"""

from __future__ import annotations

import logging
import secrets
from pathlib import Path
from typing import Any

import jwt
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from pydantic import SecretStr

from grantflow.models.discovery import JsonWebKeySet
from grantflow.models.errors import KeyResolutionError, UnsupportedAlgorithmError
from grantflow.models.jwt import DecodedJwt
from grantflow.models.keys import SharedSecret
from grantflow.primitives import base64url
from grantflow.primitives import jwt as jwt_codec
from grantflow.primitives.discovery import OpenIDDiscovery
from grantflow.services.assertions import encode_hmac_signature
from grantflow.services.certificates import load_certificate

logger = logging.getLogger(__name__)

HASH_ALGORITHMS = {
    "256": hashes.SHA256,
    "384": hashes.SHA384,
    "512": hashes.SHA512,
}

PublicKey = rsa.RSAPublicKey | ec.EllipticCurvePublicKey


class JwtSignatureVerifier:
    """Verifies JWT signatures against certificates, secrets or discovered keys."""

    def __init__(
        self,
        discovery: OpenIDDiscovery | None = None,
        hmac_double_encode: bool = True,
    ):
        """Initialize the verifier.

        Args:
            discovery: Discovery client used when no key material is supplied
            hmac_double_encode: Expect the legacy double-encoded HMAC signature
        """
        self._discovery = discovery or OpenIDDiscovery()
        self.hmac_double_encode = hmac_double_encode

    async def verify(
        self,
        token: str,
        signing_certificate: x509.Certificate | str | Path | None = None,
        client_secret: str | SecretStr | SharedSecret | None = None,
        public_key: PublicKey | None = None,
        jwks: JsonWebKeySet | None = None,
    ) -> bool:
        """Verify the signature of a compact JWT.

        Key material is taken from, in order: client_secret (HMAC),
        public_key, signing_certificate, jwks, and finally the key set
        discovered from the token's iss claim.

        Args:
            token: Compact serialized JWT
            signing_certificate: Certificate object or path to one
            client_secret: Shared secret for HMAC-signed tokens
            public_key: RSA or EC public key
            jwks: Previously fetched key set for the issuer

        Returns:
            True if the signature is valid, False otherwise

        Raises:
            InputValidationError, DecodeError: If the token is malformed
            UnsupportedAlgorithmError: If the alg header is not supported
            KeyResolutionError: If no verification key can be found
        """
        decoded = jwt_codec.decode(token)
        if not decoded.signature:
            logger.warning("Token has no signature segment")
            return False

        if client_secret is not None:
            return self._verify_hmac(decoded, client_secret)

        if public_key is None:
            if signing_certificate is not None:
                public_key = self._certificate_key(signing_certificate)
            else:
                public_key = await self.resolve_key(decoded, jwks)

        return self._verify_asymmetric(decoded, public_key)

    async def fetch_signing_keys(self, issuer: str) -> JsonWebKeySet:
        """Fetch the key set an issuer publishes via its discovery metadata."""
        metadata = await self._discovery.discover(issuer)
        return await self._discovery.fetch_jwks(metadata.jwks_uri)

    async def resolve_key(
        self, decoded: DecodedJwt, jwks: JsonWebKeySet | None = None
    ) -> PublicKey:
        """Find the public key matching the token's kid header.

        Raises:
            KeyResolutionError: If the issuer or a matching key is missing
        """
        if jwks is None:
            issuer = decoded.claim("iss")
            if not issuer:
                raise KeyResolutionError(
                    "Token has no iss claim to discover keys from"
                )
            jwks = await self.fetch_signing_keys(issuer)

        jwk = jwks.find(decoded.kid)
        if jwk is None:
            raise KeyResolutionError(
                f"No signing key with kid {decoded.kid!r} in the issuer's key set"
            )
        return self._jwk_to_key(jwk)

    def _jwk_to_key(self, jwk: dict[str, Any]) -> PublicKey:
        try:
            key = jwt.PyJWK(jwk).key
        except jwt.exceptions.PyJWTError as e:
            raise KeyResolutionError(
                f"Unusable signing key {jwk.get('kid')}: {e}"
            ) from e
        if not isinstance(key, (rsa.RSAPublicKey, ec.EllipticCurvePublicKey)):
            raise KeyResolutionError(
                f"Signing key {jwk.get('kid')} is not an RSA or EC public key"
            )
        return key

    def _certificate_key(
        self, certificate: x509.Certificate | str | Path
    ) -> PublicKey:
        if not isinstance(certificate, x509.Certificate):
            certificate = load_certificate(certificate)
        key = certificate.public_key()
        if not isinstance(key, (rsa.RSAPublicKey, ec.EllipticCurvePublicKey)):
            raise KeyResolutionError("Certificate does not hold an RSA or EC key")
        return key

    def _verify_hmac(
        self, decoded: DecodedJwt, client_secret: str | SecretStr | SharedSecret
    ) -> bool:
        if not isinstance(client_secret, SharedSecret):
            client_secret = SharedSecret(
                secret=client_secret, double_encode=self.hmac_double_encode
            )
        expected = encode_hmac_signature(decoded.signing_input, client_secret)
        return secrets.compare_digest(
            expected.encode("ascii"), decoded.signature.encode("ascii")
        )

    def _verify_asymmetric(self, decoded: DecodedJwt, public_key: PublicKey) -> bool:
        alg = decoded.alg or ""
        family, bits = alg[:2], alg[2:]
        hash_algorithm = HASH_ALGORITHMS.get(bits)
        if family not in ("RS", "PS", "ES") or hash_algorithm is None:
            raise UnsupportedAlgorithmError(f"Unsupported JWT algorithm: {alg!r}")

        data = decoded.signing_input.encode("ascii")
        signature = base64url.decode(decoded.signature, raw_bytes=True)

        try:
            if family == "ES":
                if not isinstance(public_key, ec.EllipticCurvePublicKey):
                    raise KeyResolutionError(f"{alg} requires an EC public key")
                public_key.verify(
                    _raw_to_der(signature), data, ec.ECDSA(hash_algorithm())
                )
            else:
                if not isinstance(public_key, rsa.RSAPublicKey):
                    raise KeyResolutionError(f"{alg} requires an RSA public key")
                if family == "RS":
                    pad = padding.PKCS1v15()
                else:
                    pad = padding.PSS(
                        mgf=padding.MGF1(hash_algorithm()),
                        salt_length=hash_algorithm.digest_size,
                    )
                public_key.verify(signature, data, pad, hash_algorithm())
        except InvalidSignature:
            logger.debug(f"{alg} signature verification failed")
            return False

        return True


def _raw_to_der(signature: bytes) -> bytes:
    """Convert a JWS ECDSA signature (r || s) to DER."""
    half = len(signature) // 2
    r = int.from_bytes(signature[:half], "big")
    s = int.from_bytes(signature[half:], "big")
    return encode_dss_signature(r, s)
