"""URL-safe, unpadded Base64 as used by JWTs and PKCE (RFC 4648 Section 5)."""

from __future__ import annotations

import base64
import binascii

from grantflow.models.errors import DecodeError


def encode(data: bytes | str) -> str:
    """Encode bytes (or UTF-8 text) as unpadded Base64URL.

    Args:
        data: Raw bytes, or text which is UTF-8 encoded first

    Returns:
        Base64URL string without trailing '=' padding
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    encoded = base64.b64encode(data).decode("ascii")
    return encoded.replace("+", "-").replace("/", "_").rstrip("=")


def decode(value: str, raw_bytes: bool = False) -> bytes | str:
    """Decode an unpadded Base64URL string.

    Padding is restored from the length remainder: 0 needs none, 2 needs
    '==', 3 needs '='. A remainder of 1 can never come from an encoder.

    Args:
        value: Base64URL string, with or without padding
        raw_bytes: Return the decoded bytes instead of UTF-8 text

    Returns:
        Decoded bytes when raw_bytes is set, otherwise decoded text

    Raises:
        DecodeError: If the input is not valid Base64URL
    """
    standard = value.rstrip("=").replace("-", "+").replace("_", "/")

    remainder = len(standard) % 4
    if remainder == 1:
        raise DecodeError(f"Illegal Base64URL string length: {len(standard)}")
    if remainder == 2:
        standard += "=="
    elif remainder == 3:
        standard += "="

    try:
        decoded = base64.b64decode(standard, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid Base64URL content: {e}") from e

    if raw_bytes:
        return decoded
    try:
        return decoded.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"Base64URL content is not UTF-8 text: {e}") from e
