"""JWT models: decoded compact tokens and client assertions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

RESERVED_CLAIM_KEYS = ("header", "signature")


@dataclass(frozen=True)
class DecodedJwt:
    """A compact JWT split into its three parts.

    header and payload hold the parsed JSON objects, or the raw decoded text
    when a segment is not JSON. signature is the untouched Base64URL segment.
    signing_input is the literal "header.payload" substring of the original
    token, which is what any signature was computed over.
    """

    header: dict[str, Any] | str
    payload: dict[str, Any] | str
    signature: str | None
    signing_input: str

    @property
    def alg(self) -> str | None:
        if isinstance(self.header, dict):
            return self.header.get("alg")
        return None

    @property
    def kid(self) -> str | None:
        if isinstance(self.header, dict):
            return self.header.get("kid")
        return None

    def claim(self, name: str, default: Any = None) -> Any:
        if isinstance(self.payload, dict):
            return self.payload.get(name, default)
        return default

    def claims(self) -> dict[str, Any]:
        """Merge header fields, payload claims and signature into one mapping.

        Payload claims win over header fields of the same name. The keys
        'header' and 'signature' always refer to the full header and the
        signature segment.
        """
        merged: dict[str, Any] = {}
        if isinstance(self.header, dict):
            merged.update(self.header)
        if isinstance(self.payload, dict):
            merged.update(self.payload)
        else:
            merged["payload"] = self.payload
        merged["header"] = self.header
        merged["signature"] = self.signature
        return merged

    def __getitem__(self, key: str) -> Any:
        return self.claims()[key]


@dataclass(frozen=True)
class ClientAssertion:
    """Signed client assertion for private_key_jwt / client_secret_jwt (RFC 7523)."""

    client_assertion_jwt: str
    client_assertion_type: str
    header: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)

    def to_form_data(self) -> dict[str, str]:
        return {
            "client_assertion": self.client_assertion_jwt,
            "client_assertion_type": self.client_assertion_type,
        }
