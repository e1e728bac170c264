"""Compact JWT decoding without signature verification."""

from __future__ import annotations

import json
import re
from typing import Any

from grantflow.models.errors import InputValidationError
from grantflow.models.jwt import DecodedJwt
from grantflow.primitives import base64url

# JOSE headers are JSON objects, so the first segment starts with "{" encoded.
JWT_PATTERN = re.compile(
    r"^ey[Jw][A-Za-z0-9_-]*\.[A-Za-z0-9_-]+(?:\.[A-Za-z0-9_-]*)?$"
)


def decode(token: str) -> DecodedJwt:
    """Decode a compact JWT into header, payload and signature.

    Unsigned tokens have two segments, signed tokens three. Segments that are
    not JSON are kept as decoded text.

    Args:
        token: Compact serialized JWT

    Returns:
        DecodedJwt with parsed header and payload

    Raises:
        InputValidationError: If the token does not look like a JWT
        DecodeError: If a segment is not valid Base64URL
    """
    if not isinstance(token, str) or not JWT_PATTERN.match(token):
        raise InputValidationError("Value is not a compact serialized JWT")

    segments = token.split(".")
    if len(segments) not in (2, 3):
        raise InputValidationError(
            f"JWT must have 2 or 3 segments, got {len(segments)}"
        )

    header = _decode_segment(segments[0])
    payload = _decode_segment(segments[1])
    signature = segments[2] if len(segments) == 3 else None

    return DecodedJwt(
        header=header,
        payload=payload,
        signature=signature,
        signing_input=f"{segments[0]}.{segments[1]}",
    )


def _decode_segment(segment: str) -> dict[str, Any] | str:
    text = base64url.decode(segment)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return text
    if isinstance(parsed, dict):
        return parsed
    return text
