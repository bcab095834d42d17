"""StreamableHTTPHandler - framework-agnostic HTTP transport logic.

Routes each POSTed message to its session, spawns handler tasks, and decides
SSE vs JSON response format. No Starlette dependency.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass

import anyio
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream
from pydantic import ValidationError

from atxp_demo.capabilities import validate_initialize
from atxp_demo.context import RequestContext
from atxp_demo.exceptions import CapabilityUnsupported, MalformedSessionReference, ProtocolError
from atxp_demo.registry import Session, SessionRegistry
from atxp_demo.server import LowLevelServer
from atxp_demo.session import SessionInfo
from atxp_demo.transport.sink import ChannelSink, SinkEvent
from atxp_demo.types.initialize import InitializeRequestParams
from atxp_demo.types.json_rpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    PARSE_ERROR,
    SERVER_ERROR,
    ErrorData,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCMessageAdapter,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    JSONRPCResultResponse,
    RequestId,
    error_response,
)

logger = logging.getLogger(__name__)

SESSION_ID_HEADER = "mcp-session-id"

ServerFactory = Callable[[], LowLevelServer]


# --- Post result types ---


@dataclass
class AcceptedResponse:
    """Client sent a notification or answered a server→client request. Just ack with 202."""


@dataclass
class JSONResult:
    """Handler completed without intermediate messages. Return as JSON."""

    body: JSONRPCResponse
    session_id: str
    status_code: int = 200


@dataclass
class SSEStream:
    """Handler is streaming. First event already available."""

    first_event: SinkEvent
    event_stream: MemoryObjectReceiveStream[SinkEvent]
    session_id: str


@dataclass
class ErrorResult:
    """The message was refused before reaching any session."""

    body: JSONRPCErrorResponse
    status_code: int = 400


PostResult = AcceptedResponse | JSONResult | SSEStream | ErrorResult


def parse_message(raw: bytes) -> JSONRPCMessage:
    """Decode one POST body into a JSON-RPC message.

    Raises:
        ProtocolError: the body is not JSON, or not a JSON-RPC message
    """
    try:
        body = json.loads(raw)
    except ValueError as e:
        raise ProtocolError(ErrorData(code=PARSE_ERROR, message="Parse error")) from e
    try:
        return JSONRPCMessageAdapter.validate_python(body)
    except ValidationError as e:
        raise ProtocolError(ErrorData(code=INVALID_REQUEST, message="Invalid Request")) from e


class StreamableHTTPHandler:
    """Framework-agnostic StreamableHTTP logic.

    Testable without any HTTP framework: just call handle_post() with
    a session_id and a JSONRPCMessage.

    Args:
        registry: Live sessions; owned by the caller
        server_factory: Builds the handler set for each new session
        tg: Task group the request handlers run in
    """

    def __init__(self, registry: SessionRegistry, server_factory: ServerFactory, tg: TaskGroup) -> None:
        self.registry = registry
        self._server_factory = server_factory
        self._tg = tg

    async def handle_post(self, session_id: str | None, message: JSONRPCMessage) -> PostResult:
        """Handle a POST request. Returns a PostResult telling the framework what to respond with."""
        request_id = message.id if isinstance(message, JSONRPCRequest) else None
        try:
            if isinstance(message, JSONRPCRequest) and message.method == "initialize":
                return self._initialize(session_id, message)

            session = self.registry.resolve(session_id)
            if session is None:
                raise MalformedSessionReference()
        except ProtocolError as e:
            logger.info("Refusing %s: %s", _describe(message), e.error.message)
            return ErrorResult(body=JSONRPCErrorResponse(id=request_id, error=e.error), status_code=e.status_code)
        session.touch()

        if isinstance(message, JSONRPCResultResponse | JSONRPCErrorResponse):
            if not session.coordinator.handle_response(message):
                logger.debug("Ignoring response %r with no pending elicitation", message.id)
            return AcceptedResponse()

        if isinstance(message, JSONRPCNotification):
            self._tg.start_soon(self._run_notification, session, message)
            return AcceptedResponse()

        return await self._start_request(session, message)

    def stream_abandoned(self, session_id: str) -> None:
        """The client went away from an unfinished response stream; close its session."""
        session = self.registry.resolve(session_id)
        if session is not None:
            logger.info("Client disconnected from session %s mid-stream", session_id)
            session.channel.close()

    def _initialize(self, session_id: str | None, request: JSONRPCRequest) -> JSONResult:
        # A stale id from a closed session does not block reinitializing
        if self.registry.resolve(session_id) is not None:
            raise MalformedSessionReference("Bad Request: Server already initialized")

        check = validate_initialize(request)
        if not check.valid:
            raise CapabilityUnsupported(check.reason or "Unsupported client capabilities")
        try:
            params = InitializeRequestParams.model_validate(request.params)
        except ValidationError as e:
            raise ProtocolError(ErrorData(code=INVALID_PARAMS, message=f"Invalid initialize params: {e}")) from e

        server = self._server_factory()
        result = server.initialize_result(params.protocol_version)
        info = SessionInfo(
            client_info=params.client_info,
            client_capabilities=params.capabilities,
            protocol_version=result.protocol_version,
        )
        session = self.registry.create(info, server)
        response = JSONRPCResultResponse(
            id=request.id,
            result=result.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
        return JSONResult(body=response, session_id=session.session_id)

    async def _start_request(self, session: Session, request: JSONRPCRequest) -> PostResult:
        try:
            sink, recv = session.channel.open_stream(request.id)
        except ProtocolError as e:
            logger.info("Refusing %s: %s", request.method, e.error.message)
            return ErrorResult(body=JSONRPCErrorResponse(id=request.id, error=e.error), status_code=e.status_code)
        self._tg.start_soon(self._run_request, session, sink, request)

        # Read first event to decide response format
        try:
            first = await recv.receive()
        except anyio.EndOfStream:
            # Session closed before the handler produced anything
            return ErrorResult(
                body=error_response(SERVER_ERROR, "Session closed", request.id),
                status_code=404,
            )

        if first.is_final:
            # Handler completed without sending intermediate messages → JSON
            async with recv:
                pass
            body: JSONRPCResponse = first.message  # type: ignore[assignment]
            status_code = 500 if _is_internal_error(body) else 200
            return JSONResult(body=body, session_id=session.session_id, status_code=status_code)

        return SSEStream(first_event=first, event_stream=recv, session_id=session.session_id)

    async def _run_request(self, session: Session, sink: ChannelSink, request: JSONRPCRequest) -> None:
        """Run the handler and close the sink when done."""
        ctx = _context(session, request.id, sink)
        response: JSONRPCResponse | None = None
        try:
            try:
                response = await session.server.dispatch_request(ctx, request)
            except Exception:
                logger.exception("Handler error for %s", request.method)
                if not sink.started:
                    response = error_response(INTERNAL_ERROR, "Internal server error", request.id)
            finally:
                # Stream is released before the result is sent
                session.channel.release(request.id)
                session.touch()
            if response is not None:
                await sink.send_result(response)
        finally:
            await sink.close()

    async def _run_notification(self, session: Session, notification: JSONRPCNotification) -> None:
        """Run a notification handler (no response needed)."""
        ctx = _context(session, "notification", _NoOpSink())
        await session.server.dispatch_notification(ctx, notification)


class _NoOpSink:
    """A sink that does nothing. Used for notifications which don't produce responses."""

    started = False

    async def send_intermediate(self, message: JSONRPCMessage) -> None:
        pass

    async def send_result(self, response: JSONRPCResponse) -> None:
        pass

    async def close(self) -> None:
        pass


def _context(session: Session, request_id: RequestId, sink: ChannelSink | _NoOpSink) -> RequestContext:
    return RequestContext(
        session_id=session.session_id,
        session=session.info,
        request_id=request_id,
        _sink=sink,
        coordinator=session.coordinator,
    )


def _is_internal_error(response: JSONRPCResponse) -> bool:
    return isinstance(response, JSONRPCErrorResponse) and response.error.code == INTERNAL_ERROR


def _describe(message: JSONRPCMessage) -> str:
    if isinstance(message, JSONRPCRequest | JSONRPCNotification):
        return message.method
    return f"response {message.id!r}"
