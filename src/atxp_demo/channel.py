"""Per-session duplex channel.

Inbound messages reach the session through the HTTP handler; outbound
server-initiated messages are pushed onto the response stream of the call
they relate to. The channel is the single place that knows which call
streams are open, and it owns the session's close event.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream

from atxp_demo.exceptions import ChannelClosedError, DuplicateRequestId
from atxp_demo.transport.sink import ChannelSink, SinkEvent
from atxp_demo.types.json_rpc import JSONRPCMessage, RequestId

logger = logging.getLogger(__name__)

CloseCallback = Callable[[], None]

# Buffered so that a push never waits on the HTTP writer
CALL_STREAM_BUFFER_SIZE = 16


class SessionChannel:
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self._streams: dict[RequestId, ChannelSink] = {}
        self._close_callbacks: list[CloseCallback] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def open_stream(self, request_id: RequestId) -> tuple[ChannelSink, MemoryObjectReceiveStream[SinkEvent]]:
        """Open the response stream for one inbound request.

        Returns the sink the request's handler writes to and the receive end
        the transport reads from.
        """
        if self._closed:
            raise ChannelClosedError(f"Channel for session {self.session_id} is closed")
        if request_id in self._streams:
            raise DuplicateRequestId(request_id)
        send, recv = anyio.create_memory_object_stream[SinkEvent](CALL_STREAM_BUFFER_SIZE)
        sink = ChannelSink(send)
        self._streams[request_id] = sink
        return sink, recv

    @property
    def idle(self) -> bool:
        """Whether no call is currently streaming on this channel."""
        return not self._streams

    def release(self, request_id: RequestId) -> None:
        self._streams.pop(request_id, None)

    async def push(self, message: JSONRPCMessage, related_request_id: RequestId) -> None:
        """Push a server-initiated message onto the stream of the related call.

        Raises:
            ChannelClosedError: the channel, or the related call's stream, is gone
        """
        sink = self._streams.get(related_request_id)
        if self._closed or sink is None or sink.closed:
            raise ChannelClosedError(f"No open stream for request {related_request_id!r} in session {self.session_id}")
        await sink.send_intermediate(message)
        if sink.closed:
            raise ChannelClosedError(f"Stream for request {related_request_id!r} closed during push")

    def on_close(self, callback: CloseCallback) -> None:
        self._close_callbacks.append(callback)

    def close(self) -> None:
        """Close the channel. Idempotent.

        Close callbacks run synchronously and exactly once, before any open
        call stream is torn down.
        """
        if self._closed:
            return
        self._closed = True
        logger.debug("Closing channel for session %s", self.session_id)
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            callback()
        streams, self._streams = self._streams, {}
        for sink in streams.values():
            sink.mark_closed()
