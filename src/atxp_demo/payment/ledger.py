"""HTTP adapter for the payment ledger.

The ledger speaks its own charge format (account ids rather than a
source/destinations pair, amounts as strings). ``to_ledger_format`` is the
only place that knows the mapping.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Annotated

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from atxp_demo.exceptions import LedgerError
from atxp_demo.payment.types import Charge, Paid, PaymentRequestDescriptor, PaymentRequired, VerificationResult

logger = logging.getLogger(__name__)

CHARGE_PATH = "/charge"
PAYMENT_REQUEST_PATH = "/payment-request"


class LedgerChargeRequest(BaseModel):
    """A charge in the ledger's wire format."""

    model_config = ConfigDict(populate_by_name=True)

    source_account_id: Annotated[str, Field(alias="sourceAccountId")]
    destination_account_id: Annotated[str, Field(alias="destinationAccountId")]
    network: str
    currency: str
    amount: Decimal
    payee_name: Annotated[str, Field(alias="payeeName")]
    payment_request_id: Annotated[str | None, Field(alias="paymentRequestId")] = None


class LedgerPaymentRequest(BaseModel):
    """The ledger's answer to a payment-request creation."""

    model_config = ConfigDict(extra="allow")

    id: str


def to_ledger_format(charge: Charge, payment_request_id: str | None = None) -> LedgerChargeRequest:
    return LedgerChargeRequest(
        source_account_id=charge.source,
        destination_account_id=charge.destination.address,
        network=charge.destination.network,
        currency=charge.currency,
        amount=charge.amount,
        payee_name=charge.payee_name,
        payment_request_id=payment_request_id,
    )


class HttpPaymentLedger:
    """PaymentLedger backed by the ledger's HTTP API.

    Args:
        base_url: Root URL of the ledger, e.g. ``https://auth.atxp.ai``
        http_client: Client used for every call; owned by the caller
    """

    def __init__(self, base_url: str, http_client: httpx.AsyncClient) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = http_client

    def payment_request_url(self, payment_request_id: str) -> str:
        return f"{self.base_url}{PAYMENT_REQUEST_PATH}/{payment_request_id}"

    async def verify(self, charge: Charge, *, payment_request_id: str | None = None) -> VerificationResult:
        body = to_ledger_format(charge, payment_request_id)
        response = await self._post(CHARGE_PATH, body)

        if response.status_code == httpx.codes.OK:
            logger.debug("Charge of %s from %s settled", charge.amount, charge.source)
            return Paid(charge)
        if response.status_code != httpx.codes.PAYMENT_REQUIRED:
            raise LedgerError(response.status_code, response.text)

        if payment_request_id is None:
            payment_request_id = await self._create_payment_request(body)
            logger.info("Created payment request %s for %s %s", payment_request_id, charge.amount, charge.currency)
        return PaymentRequired(
            PaymentRequestDescriptor(
                payment_request_id=payment_request_id,
                payment_request_url=self.payment_request_url(payment_request_id),
                charge_amount=charge.amount,
            )
        )

    async def _create_payment_request(self, body: LedgerChargeRequest) -> str:
        response = await self._post(PAYMENT_REQUEST_PATH, body)
        if not response.is_success:
            raise LedgerError(response.status_code, response.text)
        try:
            return LedgerPaymentRequest.model_validate(response.json()).id
        except (ValueError, ValidationError) as e:
            raise LedgerError(response.status_code, f"unreadable payment request: {e}") from e

    async def _post(self, path: str, body: LedgerChargeRequest) -> httpx.Response:
        return await self._client.post(
            f"{self.base_url}{path}",
            json=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
