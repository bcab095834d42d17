"""Elicitation coordinator.

Links an in-flight tool call to a server-initiated URL-mode elicitation,
suspends the call, and resumes it exactly once with whichever of these
happens first: a matching client response, the wait budget running out, or
the session channel closing.

Each pending wait lives in a table keyed by the elicitation id, which is
also the JSON-RPC id of the pushed request and therefore comes back
unchanged on the client's response. Resolution always pops the entry from
the table before resolving it, so the three resolution paths cannot both
win.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

import anyio
from pydantic import ValidationError

from atxp_demo.channel import SessionChannel
from atxp_demo.exceptions import ChannelClosedError, ElicitationAlreadyPending
from atxp_demo.payment.types import PaymentRequestDescriptor
from atxp_demo.types.elicitation import ELICITATION_CREATE_METHOD, ElicitRequestURLParams, ElicitResult
from atxp_demo.types.json_rpc import JSONRPCErrorResponse, JSONRPCRequest, JSONRPCResponse, RequestId

logger = logging.getLogger(__name__)

DEFAULT_ELICITATION_TIMEOUT = 30.0


class ElicitationState(str, Enum):
    IDLE = "idle"
    REQUEST_SENT = "request_sent"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    TIMED_OUT = "timed_out"
    CHANNEL_CLOSED = "channel_closed"

    @property
    def is_terminal(self) -> bool:
        return self not in (ElicitationState.IDLE, ElicitationState.REQUEST_SENT)


@dataclass
class PendingElicitation:
    """A resolvable handle for one suspended call."""

    elicitation_id: str
    related_request_id: RequestId
    state: ElicitationState = ElicitationState.IDLE
    _resolved: anyio.Event = field(default_factory=anyio.Event)

    def resolve(self, outcome: ElicitationState) -> bool:
        """Move to a terminal state. Returns False if already resolved."""
        if self.state.is_terminal:
            return False
        self.state = outcome
        self._resolved.set()
        return True

    async def wait(self) -> ElicitationState:
        await self._resolved.wait()
        return self.state


def payment_elicitation_message(charge_amount: Decimal) -> str:
    return f"Payment of ${charge_amount} is required to use this tool. Please approve the payment to continue."


class ElicitationCoordinator:
    """Pending-wait table for one session's elicitations."""

    def __init__(self, channel: SessionChannel, timeout: float = DEFAULT_ELICITATION_TIMEOUT) -> None:
        self._channel = channel
        self._timeout = timeout
        self._pending: dict[str, PendingElicitation] = {}

    @property
    def timeout(self) -> float:
        return self._timeout

    def pending(self) -> list[PendingElicitation]:
        return list(self._pending.values())

    def is_pending_for(self, related_request_id: RequestId) -> bool:
        return any(p.related_request_id == related_request_id for p in self._pending.values())

    async def request_approval(
        self,
        descriptor: PaymentRequestDescriptor,
        related_request_id: RequestId,
    ) -> ElicitationState:
        """Ask the client to approve a payment and wait for the outcome.

        Args:
            descriptor: The payment request the client should approve
            related_request_id: Id of the tool call that is being suspended

        Returns:
            The terminal state the wait ended in.

        Raises:
            ElicitationAlreadyPending: the call already has an elicitation outstanding
        """
        if self.is_pending_for(related_request_id):
            raise ElicitationAlreadyPending(f"Request {related_request_id!r} already has a pending elicitation")

        pending = PendingElicitation(
            elicitation_id=secrets.token_urlsafe(16),
            related_request_id=related_request_id,
        )
        self._pending[pending.elicitation_id] = pending
        try:
            pending.state = ElicitationState.REQUEST_SENT
            request = JSONRPCRequest(
                id=pending.elicitation_id,
                method=ELICITATION_CREATE_METHOD,
                params=ElicitRequestURLParams(
                    elicitation_id=pending.elicitation_id,
                    url=descriptor.payment_request_url,
                    message=payment_elicitation_message(descriptor.charge_amount),
                ).model_dump(by_alias=True, exclude_none=True),
            )
            logger.info(
                "Requesting payment approval %s for request %r (payment request %s)",
                pending.elicitation_id,
                related_request_id,
                descriptor.payment_request_id,
            )
            try:
                await self._channel.push(request, related_request_id)
            except ChannelClosedError:
                logger.info("Channel closed before elicitation %s could be sent", pending.elicitation_id)
                self._resolve(pending.elicitation_id, ElicitationState.CHANNEL_CLOSED)

            with anyio.move_on_after(self._timeout):
                await pending.wait()

            if self._resolve(pending.elicitation_id, ElicitationState.TIMED_OUT):
                logger.info("Elicitation %s timed out after %ss", pending.elicitation_id, self._timeout)
            return pending.state
        finally:
            # Covers cancellation of the waiting task as well
            self._pending.pop(pending.elicitation_id, None)

    def handle_response(self, message: JSONRPCResponse) -> bool:
        """Resolve the pending wait a client response belongs to.

        Returns False when the message is not an elicitation response: its id
        matches no pending wait, it is an error, or its result is not a
        well-formed accept/decline.
        """
        pending = self._pending.get(str(message.id)) if message.id is not None else None
        if pending is None:
            return False
        if isinstance(message, JSONRPCErrorResponse):
            logger.warning("Client answered elicitation %s with an error: %s", message.id, message.error.message)
            return False
        try:
            result = ElicitResult.model_validate(message.result)
        except ValidationError:
            logger.warning("Ignoring malformed elicitation response for %s: %s", message.id, message.result)
            return False

        outcome = ElicitationState.ACCEPTED if result.action == "accept" else ElicitationState.DECLINED
        resolved = self._resolve(pending.elicitation_id, outcome)
        if resolved:
            logger.info("Elicitation %s resolved: %s", pending.elicitation_id, result.action)
        return resolved

    def cancel_all(self) -> None:
        """Resolve every pending wait as CHANNEL_CLOSED."""
        for elicitation_id in list(self._pending):
            if self._resolve(elicitation_id, ElicitationState.CHANNEL_CLOSED):
                logger.info("Elicitation %s cancelled: channel closed", elicitation_id)

    def _resolve(self, elicitation_id: str, outcome: ElicitationState) -> bool:
        pending = self._pending.pop(elicitation_id, None)
        if pending is None:
            return False
        return pending.resolve(outcome)
