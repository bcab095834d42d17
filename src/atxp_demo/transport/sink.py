"""ResponseSink implementation backed by a memory channel."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import anyio
from anyio.streams.memory import MemoryObjectSendStream

from atxp_demo.types.json_rpc import JSONRPCMessage, JSONRPCResponse

logger = logging.getLogger(__name__)


@dataclass
class SinkEvent:
    """An event produced by a ResponseSink for the transport layer to consume."""

    message: JSONRPCMessage
    is_final: bool = False


class ChannelSink:
    """ResponseSink that writes events to a memory channel.

    Used by the HTTP transport. The HTTP handler reads from the other end
    of the channel to decide SSE vs JSON response format.
    """

    def __init__(self, send_stream: MemoryObjectSendStream[SinkEvent]) -> None:
        self._send = send_stream
        self._closed = False
        self._started = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def started(self) -> bool:
        """Whether anything has been written, i.e. a response has begun."""
        return self._started

    async def send_intermediate(self, message: JSONRPCMessage) -> None:
        """Send an intermediate message (notification or server→client request)."""
        await self._deliver(SinkEvent(message=message))

    async def send_result(self, response: JSONRPCResponse) -> None:
        """Send the final result and close the channel."""
        await self._deliver(SinkEvent(message=response, is_final=True))
        await self.close()

    async def close(self) -> None:
        """Close the channel without sending a result (e.g., on handler error)."""
        if self._closed:
            return
        self._closed = True
        with anyio.CancelScope(shield=True):
            await self._send.aclose()

    def mark_closed(self) -> None:
        """Close from synchronous code, without waiting on the reader."""
        if self._closed:
            return
        self._closed = True
        self._send.close()

    async def _deliver(self, event: SinkEvent) -> None:
        if self._closed:
            return
        try:
            await self._send.send(event)
            self._started = True
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            # Reader went away (client disconnected)
            logger.debug("Dropping message for a stream with no reader")
            self._closed = True
