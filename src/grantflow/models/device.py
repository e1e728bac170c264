"""Device authorization response model (RFC 8628 Section 3.2)."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class DeviceAuthorizationResponse(BaseModel):
    """What the device authorization endpoint returned, verbatim."""

    model_config = ConfigDict(extra="allow", frozen=True)

    device_code: str
    user_code: str
    verification_uri: str | None = None
    verification_uri_complete: str | None = None
    expires_in: int | None = None
    interval: int | None = None
    message: str | None = None
