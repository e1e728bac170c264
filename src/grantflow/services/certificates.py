"""Resolution of certificates and private keys from files.

Supports PEM files holding a certificate and/or private key, DER
certificates, and PKCS#12 bundles (.pfx / .p12).
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.serialization import pkcs12

from grantflow.models.errors import CertificateResolutionError
from grantflow.models.keys import RsaSigningKey

logger = logging.getLogger(__name__)

PKCS12_SUFFIXES = (".pfx", ".p12")
PEM_PRIVATE_KEY = re.compile(
    rb"-----BEGIN ([A-Z ]*)PRIVATE KEY-----.*?-----END \1PRIVATE KEY-----", re.DOTALL
)
PEM_CERTIFICATE = re.compile(
    rb"-----BEGIN CERTIFICATE-----.*?-----END CERTIFICATE-----", re.DOTALL
)


def certificate_thumbprint(certificate: x509.Certificate) -> bytes:
    """SHA-1 thumbprint of the DER certificate, the value behind x5t."""
    return certificate.fingerprint(hashes.SHA1())


def load_signing_key(
    path: str | Path,
    password: str | None = None,
    kid: str | None = None,
) -> RsaSigningKey:
    """Load an RSA private key (and certificate, if present) from a file.

    Args:
        path: PEM or PKCS#12 file
        password: Password protecting the key or bundle
        kid: Key identifier to advertise in assertion headers

    Returns:
        RsaSigningKey ready for assertion signing

    Raises:
        CertificateResolutionError: If no usable RSA private key is found
    """
    data = _read(path)
    secret = password.encode("utf-8") if password else None

    if Path(path).suffix.lower() in PKCS12_SUFFIXES:
        try:
            private_key, certificate, _ = pkcs12.load_key_and_certificates(
                data, secret
            )
        except ValueError as e:
            raise CertificateResolutionError(
                f"Could not read PKCS#12 bundle {path}: {e}"
            ) from e
    else:
        private_key = _load_pem_private_key(data, secret, path)
        certificate = _load_pem_certificate(data)

    if private_key is None:
        raise CertificateResolutionError(f"No private key found in {path}")
    if not isinstance(private_key, RSAPrivateKey):
        raise CertificateResolutionError(
            f"Private key in {path} is not an RSA key"
        )

    logger.debug(
        f"Loaded signing key from {path} "
        f"(certificate: {'yes' if certificate else 'no'})"
    )
    return RsaSigningKey(private_key=private_key, certificate=certificate, kid=kid)


def load_certificate(path: str | Path) -> x509.Certificate:
    """Load an X.509 certificate from a PEM or DER file.

    Raises:
        CertificateResolutionError: If the file holds no certificate
    """
    data = _read(path)
    certificate = _load_pem_certificate(data)
    if certificate is not None:
        return certificate
    try:
        return x509.load_der_x509_certificate(data)
    except ValueError as e:
        raise CertificateResolutionError(f"No certificate found in {path}") from e


def _read(path: str | Path) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise CertificateResolutionError(
            f"Could not read key material from {path}: {e}"
        ) from e


def _load_pem_private_key(data: bytes, password: bytes | None, path: str | Path):
    match = PEM_PRIVATE_KEY.search(data)
    if match is None:
        return None
    try:
        return serialization.load_pem_private_key(match.group(0), password=password)
    except (ValueError, TypeError) as e:
        raise CertificateResolutionError(
            f"Could not load private key from {path}: {e}"
        ) from e


def _load_pem_certificate(data: bytes) -> x509.Certificate | None:
    match = PEM_CERTIFICATE.search(data)
    if match is None:
        return None
    try:
        return x509.load_pem_x509_certificate(match.group(0))
    except ValueError:
        return None
