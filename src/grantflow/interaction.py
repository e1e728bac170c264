"""Contracts for the user-facing parts of an authorization request.

The authorization endpoint needs a user agent the user can interact with
(a browser or embedded web view) and, for the form_post response mode, a
local HTTP listener that catches the POST the authorization server sends
back. Both are injected so flows can run against real browsers or fakes.
"""

from __future__ import annotations

import asyncio
import logging
import re
import socket
from typing import Awaitable, Callable, Protocol
from urllib.parse import urlparse

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

logger = logging.getLogger(__name__)


class InteractiveUserAgent(Protocol):
    """Protocol for the interactive step of an authorization request.

    Allows different strategies for browser interaction:
    - Manual (print URL, paste back the final location)
    - Browser automation or an embedded web view
    - Canned locations in tests
    """

    async def navigate(
        self,
        uri: str,
        completion_pattern: re.Pattern[str],
        *,
        user_agent: str | None = None,
    ) -> str | None:
        """Navigate to uri and wait for a location matching completion_pattern.

        Args:
            uri: Authorization URL to open
            completion_pattern: Matches the redirect that ends the interaction
            user_agent: Optional User-Agent header override

        Returns:
            The final location, or None if the user closed the interaction
        """
        ...


class LoopbackReceiver(Protocol):
    """Protocol for catching a single form_post response."""

    async def listen(self, uri_prefix: str) -> str:
        """Listen on uri_prefix, accept one POST and return its body."""
        ...


class ManualUserAgent:
    """User agent that hands the URL to a callback.

    The callback shows the URL to the user and returns the location the
    browser ended on. Suitable for CLI tools and custom integrations.
    """

    def __init__(
        self, callback_handler: Callable[[str], Awaitable[str | None]] | None = None
    ):
        """Initialize manual user agent.

        Args:
            callback_handler: Optional coroutine function called with the URL.
                              Should return the final location.
        """
        self.callback_handler = callback_handler

    async def navigate(
        self,
        uri: str,
        completion_pattern: re.Pattern[str],
        *,
        user_agent: str | None = None,
    ) -> str | None:
        if self.callback_handler:
            return await self.callback_handler(uri)
        raise NotImplementedError(
            f"Please visit {uri} and provide the final redirect location"
        )


class StarletteLoopbackReceiver:
    """Single-shot HTTP listener for form_post responses.

    Serves a Starlette app with uvicorn on the redirect URI's host and port,
    answers the first POST to its path with an empty 200 and returns the
    request body. The listening socket is closed however listen() exits,
    including cancellation.
    """

    def __init__(self, log_level: str = "warning"):
        self.log_level = log_level

    async def listen(self, uri_prefix: str) -> str:
        parsed = urlparse(uri_prefix)
        host = parsed.hostname or "127.0.0.1"
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        path = parsed.path or "/"

        captured: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        server = uvicorn.Server(
            uvicorn.Config(
                app=self.build_app(path, captured),
                host=host,
                port=port,
                log_level=self.log_level,
            )
        )

        family = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)[0][0]
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            serve_task = asyncio.create_task(server.serve(sockets=[sock]))
            logger.info(f"Loopback receiver listening on {host}:{port}{path}")
            try:
                return await captured
            finally:
                server.should_exit = True
                await asyncio.gather(serve_task, return_exceptions=True)
        finally:
            sock.close()
            logger.debug(f"Loopback receiver on {host}:{port} closed")

    def build_app(self, path: str, captured: asyncio.Future[str]) -> Starlette:
        """Build the app that resolves captured with the first POST body."""

        async def receive_post(request: Request) -> Response:
            body = await request.body()
            if not captured.done():
                captured.set_result(body.decode("utf-8"))
                logger.debug(f"Loopback receiver captured {len(body)} bytes")
            return Response(status_code=200)

        return Starlette(routes=[Route(path, receive_post, methods=["POST"])])
