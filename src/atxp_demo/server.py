"""LowLevelServer - handler registry and dispatch.

No I/O and no session bookkeeping. The HTTP handler owns both and hands
each request to the session's server together with a RequestContext.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel

from atxp_demo.context import RequestContext
from atxp_demo.exceptions import ProtocolError
from atxp_demo.types.base import LATEST_PROTOCOL_VERSION
from atxp_demo.types.common import Implementation, ServerCapabilities
from atxp_demo.types.initialize import InitializeResult
from atxp_demo.types.json_rpc import (
    METHOD_NOT_FOUND,
    ErrorData,
    JSONRPCErrorResponse,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    JSONRPCResultResponse,
)

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOL_VERSIONS = [LATEST_PROTOCOL_VERSION, "2025-06-18"]

RequestHandler = Callable[[RequestContext, JSONRPCRequest], Awaitable[Any]]
NotificationHandler = Callable[[RequestContext, JSONRPCNotification], Awaitable[None]]


class LowLevelServer:
    """Handler registry + dispatch.

    Usage:
        server = LowLevelServer(name="my-server", version="1.0")

        @server.request_handler("tools/list")
        async def list_tools(ctx: RequestContext, request: JSONRPCRequest):
            return ListToolsResult(tools=[...])

    Handlers may raise ProtocolError to answer with an error envelope. Any
    other exception propagates to the transport, which knows whether a
    response has already started streaming.
    """

    def __init__(self, *, name: str, version: str) -> None:
        self.name = name
        self.version = version
        self._request_handlers: dict[str, RequestHandler] = {}
        self._notification_handlers: dict[str, NotificationHandler] = {}

    def request_handler(self, method: str) -> Callable[[RequestHandler], RequestHandler]:
        """Decorator to register a request handler for a given method."""

        def decorator(fn: RequestHandler) -> RequestHandler:
            self._request_handlers[method] = fn
            return fn

        return decorator

    def notification_handler(self, method: str) -> Callable[[NotificationHandler], NotificationHandler]:
        """Decorator to register a notification handler for a given method."""

        def decorator(fn: NotificationHandler) -> NotificationHandler:
            self._notification_handlers[method] = fn
            return fn

        return decorator

    async def dispatch_request(self, ctx: RequestContext, request: JSONRPCRequest) -> JSONRPCResponse:
        """Dispatch a request to the appropriate handler."""
        handler = self._request_handlers.get(request.method)
        if not handler:
            return JSONRPCErrorResponse(
                id=request.id,
                error=ErrorData(code=METHOD_NOT_FOUND, message=f"Method not found: {request.method}"),
            )
        try:
            result = await handler(ctx, request)
        except ProtocolError as e:
            return JSONRPCErrorResponse(id=request.id, error=e.error)

        # Handler can return a BaseModel (serialized) or a raw dict
        if isinstance(result, BaseModel):
            result_data = result.model_dump(mode="json", by_alias=True, exclude_none=True)
        elif isinstance(result, dict):
            result_data = result
        else:
            result_data = {}
        return JSONRPCResultResponse(id=request.id, result=result_data)

    async def dispatch_notification(self, ctx: RequestContext, notification: JSONRPCNotification) -> None:
        """Dispatch a notification to the appropriate handler."""
        handler = self._notification_handlers.get(notification.method)
        if handler:
            try:
                await handler(ctx, notification)
            except Exception:
                logger.exception("Notification handler error for %s", notification.method)

    def get_capabilities(self) -> ServerCapabilities:
        """Derive capabilities from registered handlers."""
        caps = ServerCapabilities()
        if "tools/list" in self._request_handlers or "tools/call" in self._request_handlers:
            caps.tools = {}
        return caps

    def initialize_result(self, requested_version: str) -> InitializeResult:
        """Build the handshake answer, echoing the client's protocol version when supported."""
        if requested_version in SUPPORTED_PROTOCOL_VERSIONS:
            protocol_version = requested_version
        else:
            protocol_version = LATEST_PROTOCOL_VERSION
        return InitializeResult(
            protocol_version=protocol_version,
            capabilities=self.get_capabilities(),
            server_info=Implementation(name=self.name, version=self.version),
        )
