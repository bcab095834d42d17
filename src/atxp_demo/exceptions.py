"""Exceptions raised by the payment demo server."""

from atxp_demo.types.json_rpc import INVALID_PARAMS, INVALID_REQUEST, SERVER_ERROR, ErrorData


class AtxpDemoError(Exception):
    """Base error for the payment demo server."""


class ProtocolError(AtxpDemoError):
    """A request the server refuses at the envelope level.

    Carries the ErrorData that is sent back to the client in place of a
    result. No session state is mutated when one of these is raised.

    Attributes:
        error: The ErrorData describing the refusal
        status_code: The HTTP status used when the refusal goes over HTTP
    """

    error: ErrorData
    status_code: int = 400

    def __init__(self, error: ErrorData):
        super().__init__(error.message)
        self.error = error


class CapabilityUnsupported(ProtocolError):
    """The initializing client cannot take part in the elicitation flow."""

    def __init__(self, reason: str):
        super().__init__(ErrorData(code=INVALID_PARAMS, message=reason))


class MalformedSessionReference(ProtocolError):
    """A non-initialize message named a missing or unknown session."""

    def __init__(self, message: str = "Bad Request"):
        super().__init__(ErrorData(code=SERVER_ERROR, message=message))


class DuplicateRequestId(ProtocolError):
    """A request reused the id of a call that is still in flight on the same session."""

    def __init__(self, request_id: object):
        message = f"Invalid Request: request id {request_id!r} is already in flight"
        super().__init__(ErrorData(code=INVALID_REQUEST, message=message))


class ChannelClosedError(AtxpDemoError):
    """A push was attempted on a channel, or a call stream, that has closed."""


class ElicitationAlreadyPending(AtxpDemoError):
    """A second elicitation was requested for a call that is still waiting on one."""


class LedgerError(AtxpDemoError):
    """The payment ledger failed in a way that is not a payment requirement."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f"Payment ledger returned {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail
