"""Key material used to sign client assertions and verify tokens."""

from __future__ import annotations

from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from pydantic import SecretStr


@dataclass(frozen=True)
class RsaSigningKey:
    """RSA private key, optionally with the certificate it belongs to.

    When a certificate is present its thumbprint is advertised as x5t.
    """

    private_key: RSAPrivateKey
    certificate: x509.Certificate | None = None
    kid: str | None = None


@dataclass(frozen=True)
class SharedSecret:
    """Client secret used as an HMAC key.

    double_encode reproduces the legacy signature encoding where the HMAC
    digest is standard-Base64 encoded and that text is Base64URL encoded
    again. Builder and verifier must agree on it.
    """

    secret: SecretStr
    double_encode: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.secret, SecretStr):
            object.__setattr__(self, "secret", SecretStr(self.secret))

    def key_bytes(self) -> bytes:
        return self.secret.get_secret_value().encode("utf-8")


SigningKey = RsaSigningKey | SharedSecret
