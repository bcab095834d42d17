"""Starlette adapter - thin wrapper around StreamableHTTPHandler.

This is the only module with a Starlette dependency. It converts HTTP
requests/responses to and from the framework-agnostic StreamableHTTPHandler.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import anyio
import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from atxp_demo.config import Settings
from atxp_demo.exceptions import ProtocolError
from atxp_demo.payment.gate import PaymentGate
from atxp_demo.payment.ledger import HttpPaymentLedger
from atxp_demo.payment.types import PaymentLedger
from atxp_demo.registry import SessionRegistry
from atxp_demo.tools import create_tool_server
from atxp_demo.transport.handler import (
    SESSION_ID_HEADER,
    AcceptedResponse,
    ErrorResult,
    JSONResult,
    SSEStream,
    StreamableHTTPHandler,
    parse_message,
)
from atxp_demo.types.json_rpc import SERVER_ERROR, JSONRPCErrorResponse, JSONRPCMessage, error_response

logger = logging.getLogger(__name__)


def _dump(message: JSONRPCMessage) -> dict[str, Any]:
    data = message.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(message, JSONRPCErrorResponse):
        # JSON-RPC error responses always carry an id, null when unknown
        data.setdefault("id", None)
    return data


def _format_sse_event(data: str) -> str:
    """Format a single SSE event."""
    return f"event: message\ndata: {data}\n\n"


def create_starlette_app(
    settings: Settings | None = None,
    *,
    ledger: PaymentLedger | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Starlette:
    """Create the ASGI app serving the paid tool.

    Usage:
        app = create_starlette_app(Settings())
        uvicorn.run(app, host="127.0.0.1", port=3000)

    Args:
        settings: Server settings; read from the environment when omitted
        ledger: Payment ledger; defaults to the HTTP ledger at ``settings.ledger_url``
        http_client: Client for the default ledger; one is created and closed
            with the app when omitted
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def app_lifespan(app: Starlette) -> AsyncIterator[None]:
        async with AsyncExitStack() as stack:
            payment_ledger = ledger
            if payment_ledger is None:
                client = http_client or await stack.enter_async_context(
                    httpx.AsyncClient(timeout=settings.ledger_timeout)
                )
                payment_ledger = HttpPaymentLedger(settings.ledger_url, client)
            gate = PaymentGate(payment_ledger)
            registry = SessionRegistry(elicitation_timeout=settings.elicitation_timeout)

            async with anyio.create_task_group() as tg:
                app.state.handler = StreamableHTTPHandler(registry, lambda: create_tool_server(gate, settings), tg)
                if settings.session_idle_timeout > 0:
                    tg.start_soon(registry.run_expiry, settings.session_idle_timeout)
                logger.info("Serving %s %s on %s", settings.server_name, settings.server_version, settings.http_path)
                try:
                    yield
                finally:
                    registry.close_all()
                    tg.cancel_scope.cancel()

    async def handle_post(request: Request) -> Response:
        handler: StreamableHTTPHandler = request.app.state.handler
        session_id = request.headers.get(SESSION_ID_HEADER)

        try:
            message = parse_message(await request.body())
        except ProtocolError as e:
            return JSONResponse(content=_dump(JSONRPCErrorResponse(error=e.error)), status_code=e.status_code)

        result = await handler.handle_post(session_id=session_id, message=message)

        match result:
            case AcceptedResponse():
                return Response(status_code=202)

            case ErrorResult(body=error_body, status_code=status_code):
                return JSONResponse(content=_dump(error_body), status_code=status_code)

            case JSONResult(body=response_body, session_id=sid, status_code=status_code):
                return JSONResponse(
                    content=_dump(response_body),
                    status_code=status_code,
                    headers={SESSION_ID_HEADER: sid},
                )

            case SSEStream(first_event=first, event_stream=stream, session_id=sid):

                async def generate() -> AsyncIterator[str]:
                    finished = False
                    try:
                        yield _format_sse_event(json.dumps(_dump(first.message)))
                        async with stream:
                            async for event in stream:
                                yield _format_sse_event(json.dumps(_dump(event.message)))
                        finished = True
                    finally:
                        if not finished:
                            handler.stream_abandoned(sid)

                return StreamingResponse(
                    generate(),
                    media_type="text/event-stream",
                    headers={
                        SESSION_ID_HEADER: sid,
                        "Cache-Control": "no-cache, no-transform",
                        "Connection": "keep-alive",
                    },
                )

        return Response(status_code=500)  # unreachable but satisfies type checker

    async def method_not_allowed(request: Request) -> Response:
        return JSONResponse(content=_dump(error_response(SERVER_ERROR, "Method not allowed.")), status_code=405)

    return Starlette(
        debug=settings.debug,
        lifespan=app_lifespan,
        routes=[
            Route(settings.http_path, handle_post, methods=["POST"]),
            Route(settings.http_path, method_not_allowed, methods=["GET", "DELETE"]),
        ],
    )
