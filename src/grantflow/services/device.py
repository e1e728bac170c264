"""Device authorization endpoint client (RFC 8628 Section 3.1)."""

from __future__ import annotations

import logging
from collections.abc import Mapping

import httpx

from grantflow.models.device import DeviceAuthorizationResponse
from grantflow.settings import HTTP_TIMEOUT_DEFAULT

logger = logging.getLogger(__name__)


class OAuth2DeviceAuthorization:
    """First leg of the device authorization grant."""

    def __init__(self, timeout: float = HTTP_TIMEOUT_DEFAULT):
        self.timeout = timeout
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def request_device_code(
        self,
        device_authorization_endpoint: str,
        client_id: str,
        scope: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> DeviceAuthorizationResponse:
        """Request a device code and user code.

        Raises:
            httpx.HTTPStatusError: If the endpoint returned an error status
        """
        form_data = {"client_id": client_id}
        if scope:
            form_data["scope"] = scope

        request_headers = httpx.Headers(
            {
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
            }
        )
        request_headers.update(headers or {})

        logger.debug(
            f"Device authorization request to {device_authorization_endpoint} "
            f"for client {client_id}"
        )
        response = await self._http_client.post(
            device_authorization_endpoint, data=form_data, headers=request_headers
        )
        response.raise_for_status()

        device_response = DeviceAuthorizationResponse.model_validate(response.json())
        logger.info(
            f"Device authorization started, user code {device_response.user_code}"
        )
        return device_response

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()
