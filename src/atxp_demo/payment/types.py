"""Payment domain types and the ledger interface.

Verification never raises to signal that a charge is unpaid: it returns
``PaymentRequired`` carrying the descriptor needed to ask the client for
approval. Only genuine faults (the ledger is down, answers garbage) raise.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol


@dataclass(frozen=True)
class PaymentDestination:
    """Where charged funds go: an account address on a given network."""

    address: str
    network: str


@dataclass(frozen=True)
class Charge:
    """A charge for one tool call, in the server's own terms."""

    source: str
    destination: PaymentDestination
    amount: Decimal
    currency: str
    payee_name: str


@dataclass(frozen=True)
class PaymentRequestDescriptor:
    """A resumable request for payment, issued by the ledger for an unpaid charge."""

    payment_request_id: str
    payment_request_url: str
    charge_amount: Decimal


@dataclass(frozen=True)
class Paid:
    charge: Charge


@dataclass(frozen=True)
class PaymentRequired:
    descriptor: PaymentRequestDescriptor


VerificationResult = Paid | PaymentRequired


class PaymentLedger(Protocol):
    """What the payment gate needs from a ledger."""

    async def verify(self, charge: Charge, *, payment_request_id: str | None = None) -> VerificationResult:
        """Check whether ``charge`` is settled.

        Args:
            charge: The charge to settle
            payment_request_id: When given, check that existing payment request
                instead of creating a new one

        Returns:
            Paid, or PaymentRequired with the descriptor the client must approve
        """
        ...
