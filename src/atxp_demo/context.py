"""RequestContext and the ResponseSink protocol."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from atxp_demo.elicitation import ElicitationCoordinator, ElicitationState
from atxp_demo.payment.types import PaymentRequestDescriptor
from atxp_demo.session import SessionInfo
from atxp_demo.types.json_rpc import JSONRPCMessage, JSONRPCNotification, JSONRPCResponse, RequestId


@runtime_checkable
class ResponseSink(Protocol):
    """Transport-specific sink for outgoing messages during request processing.

    One per incoming request. The HTTP transport's ChannelSink decides, from
    what gets written, whether the response is plain JSON or an SSE stream.
    """

    @property
    def started(self) -> bool:
        """Whether anything has been delivered to the client yet."""
        ...

    async def send_intermediate(self, message: JSONRPCMessage) -> None:
        """Send a notification or server→client request during processing."""
        ...

    async def send_result(self, response: JSONRPCResponse) -> None:
        """Send the final result. After this, the sink is done."""
        ...

    async def close(self) -> None:
        """Ensure the sink is closed (e.g., on handler error)."""
        ...


@dataclass
class RequestContext:
    """What handlers receive. Provides server→client communication."""

    session_id: str
    session: SessionInfo | None
    request_id: RequestId
    _sink: ResponseSink
    coordinator: ElicitationCoordinator | None = None

    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification to the client during request processing.

        This forces the response to be an SSE stream.
        """
        notification = JSONRPCNotification(method=method, params=params)
        await self._sink.send_intermediate(notification)

    async def elicit_payment(self, descriptor: PaymentRequestDescriptor) -> ElicitationState:
        """Ask the client to approve ``descriptor`` and suspend until it answers."""
        if self.coordinator is None:
            raise RuntimeError("Elicitation requires a session")
        return await self.coordinator.request_approval(descriptor, self.request_id)
