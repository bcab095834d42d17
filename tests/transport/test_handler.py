"""Round-trip tests for the framework-agnostic HTTP handler.

The handler is driven directly so the SSE stream can be read event by event
while the client's elicitation answer is posted in between.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import anyio
import pytest

from atxp_demo.context import RequestContext
from atxp_demo.exceptions import ProtocolError
from atxp_demo.payment.gate import PaymentGate, ToolFailure
from atxp_demo.registry import SessionRegistry
from atxp_demo.server import LowLevelServer
from atxp_demo.tools import create_tool_server
from atxp_demo.transport.handler import (
    AcceptedResponse,
    ErrorResult,
    JSONResult,
    SSEStream,
    StreamableHTTPHandler,
    parse_message,
)
from atxp_demo.types.json_rpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    PARSE_ERROR,
    SERVER_ERROR,
    JSONRPCMessageAdapter,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResultResponse,
)
from tests.test_helpers import DESCRIPTOR, FakeLedger, call_add_request, init_request, make_settings

pytestmark = pytest.mark.anyio


@asynccontextmanager
async def _handler(
    ledger: FakeLedger,
    *,
    elicitation_timeout: float = 5.0,
) -> AsyncIterator[StreamableHTTPHandler]:
    settings = make_settings(elicitation_timeout=elicitation_timeout)
    gate = PaymentGate(ledger)
    registry = SessionRegistry(elicitation_timeout=elicitation_timeout)
    async with anyio.create_task_group() as tg:
        try:
            yield StreamableHTTPHandler(registry, lambda: create_tool_server(gate, settings), tg)
        finally:
            registry.close_all()
            tg.cancel_scope.cancel()


async def _post(handler: StreamableHTTPHandler, session_id: str | None, raw: dict[str, Any]):
    return await handler.handle_post(session_id, JSONRPCMessageAdapter.validate_python(raw))


async def _initialize(handler: StreamableHTTPHandler) -> str:
    result = await _post(handler, None, init_request())
    assert isinstance(result, JSONResult)
    return result.session_id


async def _start_unpaid_call(handler: StreamableHTTPHandler, session_id: str, request_id: int = 2):
    stream = await _post(handler, session_id, call_add_request(request_id))
    assert isinstance(stream, SSEStream)
    push = stream.first_event.message
    assert isinstance(push, JSONRPCRequest)
    assert push.method == "elicitation/create"
    return stream, push


async def test_initialize_creates_session() -> None:
    async with _handler(FakeLedger()) as handler:
        result = await _post(handler, None, init_request())

        assert isinstance(result, JSONResult)
        assert result.status_code == 200
        assert handler.registry.resolve(result.session_id) is not None
        assert result.body.result["serverInfo"] == {"name": "atxp-min-demo", "version": "1.0.0"}  # type: ignore[union-attr]
        assert result.body.result["capabilities"] == {"tools": {}}  # type: ignore[union-attr]


async def test_initialize_without_elicitation_is_refused() -> None:
    async with _handler(FakeLedger()) as handler:
        result = await _post(handler, None, init_request(capabilities={}))

        assert isinstance(result, ErrorResult)
        assert result.status_code == 400
        assert result.body.id == 1
        assert result.body.error.code == INVALID_PARAMS
        assert result.body.error.message.startswith("Client does not support elicitation")
        assert len(handler.registry) == 0


async def test_initialize_on_live_session_is_refused() -> None:
    async with _handler(FakeLedger()) as handler:
        session_id = await _initialize(handler)

        result = await _post(handler, session_id, init_request())

        assert isinstance(result, ErrorResult)
        assert result.body.error.code == SERVER_ERROR
        assert result.body.error.message == "Bad Request: Server already initialized"
        assert len(handler.registry) == 1


@pytest.mark.parametrize("session_id", [None, "unknown-session"])
async def test_request_without_live_session_is_bad_request(session_id: str | None) -> None:
    async with _handler(FakeLedger()) as handler:
        result = await _post(handler, session_id, call_add_request())

        assert isinstance(result, ErrorResult)
        assert result.status_code == 400
        assert result.body.error.code == SERVER_ERROR
        assert result.body.error.message == "Bad Request"
        assert len(handler.registry) == 0


async def test_paid_call_is_plain_json() -> None:
    async with _handler(FakeLedger(paid=True)) as handler:
        session_id = await _initialize(handler)

        result = await _post(handler, session_id, call_add_request())

        assert isinstance(result, JSONResult)
        assert result.body.result["content"] == [{"type": "text", "text": "5"}]  # type: ignore[union-attr]


async def test_accepted_elicitation_resumes_the_call() -> None:
    ledger = FakeLedger()
    async with _handler(ledger) as handler:
        session_id = await _initialize(handler)
        stream, push = await _start_unpaid_call(handler, session_id)
        assert push.params["elicitationId"] == push.id  # type: ignore[index]
        assert push.params["url"] == DESCRIPTOR.payment_request_url  # type: ignore[index]

        ack = await _post(handler, session_id, {"jsonrpc": "2.0", "id": push.id, "result": {"action": "accept"}})
        assert isinstance(ack, AcceptedResponse)

        async with stream.event_stream:
            final = await stream.event_stream.receive()

        assert final.is_final
        assert final.message.id == 2  # type: ignore[union-attr]
        assert final.message.result["content"][0]["text"] == "5"  # type: ignore[union-attr]
        assert [request_id for _, request_id in ledger.calls] == [None, DESCRIPTOR.payment_request_id]


async def test_declined_elicitation_fails_the_call() -> None:
    ledger = FakeLedger()
    async with _handler(ledger) as handler:
        session_id = await _initialize(handler)
        stream, push = await _start_unpaid_call(handler, session_id)

        await _post(handler, session_id, {"jsonrpc": "2.0", "id": push.id, "result": {"action": "decline"}})

        async with stream.event_stream:
            final = await stream.event_stream.receive()

        assert final.message.result["isError"] is True  # type: ignore[union-attr]
        assert final.message.result["content"][0]["text"] == ToolFailure.DECLINED.value  # type: ignore[union-attr]
        assert len(ledger.calls) == 1


async def test_unanswered_elicitation_times_out() -> None:
    async with _handler(FakeLedger(), elicitation_timeout=0.05) as handler:
        session_id = await _initialize(handler)
        stream, push = await _start_unpaid_call(handler, session_id)

        async with stream.event_stream:
            final = await stream.event_stream.receive()
        late = await _post(handler, session_id, {"jsonrpc": "2.0", "id": push.id, "result": {"action": "accept"}})

        assert final.message.result["content"][0]["text"] == ToolFailure.TIMED_OUT.value  # type: ignore[union-attr]
        assert isinstance(late, AcceptedResponse)


async def test_sessions_do_not_see_each_others_elicitations() -> None:
    async with _handler(FakeLedger()) as handler:
        session_a = await _initialize(handler)
        session_b = await _initialize(handler)
        stream_a, push_a = await _start_unpaid_call(handler, session_a)
        stream_b, push_b = await _start_unpaid_call(handler, session_b)
        assert push_a.id != push_b.id

        # Session B cannot answer session A's elicitation
        await _post(handler, session_b, {"jsonrpc": "2.0", "id": push_a.id, "result": {"action": "decline"}})
        assert handler.registry.resolve(session_a).coordinator.is_pending_for(2)  # type: ignore[union-attr]

        await _post(handler, session_a, {"jsonrpc": "2.0", "id": push_a.id, "result": {"action": "accept"}})
        async with stream_a.event_stream:
            final_a = await stream_a.event_stream.receive()

        assert final_a.message.result["content"][0]["text"] == "5"  # type: ignore[union-attr]
        assert handler.registry.resolve(session_b).coordinator.is_pending_for(2)  # type: ignore[union-attr]
        await stream_b.event_stream.aclose()


async def test_abandoned_stream_closes_the_session() -> None:
    async with _handler(FakeLedger()) as handler:
        session_id = await _initialize(handler)
        stream, _ = await _start_unpaid_call(handler, session_id)

        handler.stream_abandoned(session_id)

        assert handler.registry.resolve(session_id) is None
        with pytest.raises(anyio.EndOfStream):
            await stream.event_stream.receive()

        # The client has to initialize again
        result = await _post(handler, session_id, call_add_request(3))
        assert isinstance(result, ErrorResult)


async def test_notification_is_accepted() -> None:
    async with _handler(FakeLedger()) as handler:
        session_id = await _initialize(handler)

        result = await handler.handle_post(session_id, JSONRPCNotification(method="notifications/initialized"))

        assert isinstance(result, AcceptedResponse)


async def test_unrelated_response_is_accepted_and_ignored() -> None:
    async with _handler(FakeLedger()) as handler:
        session_id = await _initialize(handler)

        result = await handler.handle_post(session_id, JSONRPCResultResponse(id="nobody", result={}))

        assert isinstance(result, AcceptedResponse)


async def test_handler_crash_before_streaming_is_internal_error() -> None:
    def crashing_server() -> LowLevelServer:
        server = LowLevelServer(name="crash", version="0")

        @server.request_handler("tools/call")
        async def call_tool(ctx: RequestContext, request: JSONRPCRequest) -> None:
            raise RuntimeError("boom")

        return server

    async with anyio.create_task_group() as tg:
        handler = StreamableHTTPHandler(SessionRegistry(), crashing_server, tg)
        session_id = await _initialize(handler)

        result = await _post(handler, session_id, call_add_request())

        assert isinstance(result, JSONResult)
        assert result.status_code == 500
        assert result.body.error.code == INTERNAL_ERROR  # type: ignore[union-attr]
        assert result.body.error.message == "Internal server error"  # type: ignore[union-attr]
        tg.cancel_scope.cancel()


@pytest.mark.parametrize(
    ("raw", "code"),
    [(b"{not json", PARSE_ERROR), (b'{"jsonrpc": "2.0", "foo": 1}', INVALID_REQUEST), (b"[]", INVALID_REQUEST)],
)
def test_parse_message_errors(raw: bytes, code: int) -> None:
    with pytest.raises(ProtocolError) as exc_info:
        parse_message(raw)
    assert exc_info.value.error.code == code


async def test_notification_during_request_switches_to_sse() -> None:
    def progress_server() -> LowLevelServer:
        server = LowLevelServer(name="progress", version="0")

        @server.request_handler("tools/call")
        async def call_tool(ctx: RequestContext, request: JSONRPCRequest) -> dict[str, Any]:
            await ctx.send_notification("notifications/progress", {"progress": 1, "total": 1})
            return {"content": []}

        return server

    async with anyio.create_task_group() as tg:
        handler = StreamableHTTPHandler(SessionRegistry(), progress_server, tg)
        session_id = await _initialize(handler)

        result = await _post(handler, session_id, call_add_request())

        assert isinstance(result, SSEStream)
        assert result.first_event.message.method == "notifications/progress"  # type: ignore[union-attr]
        async with result.event_stream:
            final = await result.event_stream.receive()
        assert final.is_final
        assert final.message.result == {"content": []}  # type: ignore[union-attr]
        tg.cancel_scope.cancel()


async def test_reinitialize_with_stale_session_id_creates_new_session() -> None:
    async with _handler(FakeLedger()) as handler:
        old_session = await _initialize(handler)
        await _start_unpaid_call(handler, old_session)
        handler.stream_abandoned(old_session)

        result = await _post(handler, old_session, init_request())

        assert isinstance(result, JSONResult)
        assert result.session_id != old_session
        assert handler.registry.resolve(result.session_id) is not None
        assert handler.registry.resolve(old_session) is None


async def test_duplicate_in_flight_request_id_is_invalid_request() -> None:
    async with _handler(FakeLedger()) as handler:
        session_id = await _initialize(handler)
        stream, push = await _start_unpaid_call(handler, session_id)

        duplicate = await _post(handler, session_id, call_add_request(2))

        assert isinstance(duplicate, ErrorResult)
        assert duplicate.status_code == 400
        assert duplicate.body.id == 2
        assert duplicate.body.error.code == INVALID_REQUEST

        # The original call is still waiting and completes normally
        await _post(handler, session_id, {"jsonrpc": "2.0", "id": push.id, "result": {"action": "accept"}})
        async with stream.event_stream:
            final = await stream.event_stream.receive()
        assert final.message.result["content"][0]["text"] == "5"  # type: ignore[union-attr]


async def test_completed_sessions_expire_when_idle() -> None:
    async with _handler(FakeLedger(paid=True)) as handler:
        session_ids = [await _initialize(handler) for _ in range(5)]
        for session_id in session_ids:
            result = await _post(handler, session_id, call_add_request())
            assert isinstance(result, JSONResult)

        expired = handler.registry.expire_idle(0)

        assert sorted(expired) == sorted(session_ids)
        assert len(handler.registry) == 0
