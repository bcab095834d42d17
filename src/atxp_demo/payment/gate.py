"""Payment gate.

Wraps a tool continuation so it only runs once the call's charge is settled.
When the ledger reports the charge unpaid, the gate asks the client to approve
the payment request through an elicitation, then checks that same payment
request exactly once more.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from atxp_demo.context import RequestContext
from atxp_demo.elicitation import ElicitationState
from atxp_demo.payment.types import Charge, Paid, PaymentLedger, PaymentRequired
from atxp_demo.types.tools import CallToolResult

logger = logging.getLogger(__name__)

Continuation = Callable[[], Awaitable[CallToolResult]]


class ToolFailure(str, Enum):
    """Tool-level outcomes of a payment flow that did not end in a settled charge."""

    DECLINED = "Payment declined by the user. The tool was not run."
    TIMED_OUT = "Payment approval timed out. The tool was not run."
    CHANNEL_CLOSED = "Connection closed before the payment was approved. The tool was not run."
    NOT_COMPLETED = "Payment not completed for payment request {payment_request_id}."

    def result(self, **kwargs: Any) -> CallToolResult:
        return CallToolResult.text(self.value.format(**kwargs), is_error=True)


_ELICITATION_FAILURES = {
    ElicitationState.DECLINED: ToolFailure.DECLINED,
    ElicitationState.TIMED_OUT: ToolFailure.TIMED_OUT,
    ElicitationState.CHANNEL_CLOSED: ToolFailure.CHANNEL_CLOSED,
}


class PaymentGate:
    def __init__(self, ledger: PaymentLedger) -> None:
        self.ledger = ledger

    async def guard(self, charge: Charge, continuation: Continuation, ctx: RequestContext) -> CallToolResult:
        """Run ``continuation`` if, and only if, ``charge`` is paid.

        Ledger faults propagate unchanged; every other way the payment can
        fail becomes a tool error result.
        """
        verification = await self.ledger.verify(charge)
        if isinstance(verification, Paid):
            return await continuation()

        assert isinstance(verification, PaymentRequired)
        descriptor = verification.descriptor
        outcome = await ctx.elicit_payment(descriptor)
        if outcome in _ELICITATION_FAILURES:
            logger.info("Payment request %s not approved: %s", descriptor.payment_request_id, outcome.value)
            return _ELICITATION_FAILURES[outcome].result()

        recheck = await self.ledger.verify(charge, payment_request_id=descriptor.payment_request_id)
        if isinstance(recheck, Paid):
            logger.debug("Payment request %s settled after approval", descriptor.payment_request_id)
            return await continuation()

        logger.warning("Payment request %s approved but still unpaid", descriptor.payment_request_id)
        return ToolFailure.NOT_COMPLETED.result(payment_request_id=descriptor.payment_request_id)
