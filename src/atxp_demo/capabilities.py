"""Initialize-time check that a client can take part in the payment flow."""

from __future__ import annotations

from dataclasses import dataclass

from atxp_demo.types.json_rpc import JSONRPCRequest

MISSING_CAPABILITIES = "Client capabilities not provided in initialize request"
ELICITATION_UNSUPPORTED = (
    "Client does not support elicitation. URL mode elicitation is required for payment flows."
)


@dataclass(frozen=True)
class CapabilityCheck:
    valid: bool
    reason: str | None = None


def validate_initialize(request: JSONRPCRequest) -> CapabilityCheck:
    """Check the capabilities an initialize request announces.

    Works on the raw params so that a missing ``capabilities`` object is told
    apart from one that lacks ``elicitation``. ``elicitation`` must be an
    object (an empty one counts) or ``true``; null, false, 0, "" and any other
    scalar or array count as unsupported.
    """
    params = request.params or {}
    capabilities = params.get("capabilities")
    if not isinstance(capabilities, dict):
        return CapabilityCheck(valid=False, reason=MISSING_CAPABILITIES)

    elicitation = capabilities.get("elicitation")
    if not (elicitation is True or isinstance(elicitation, dict)):
        return CapabilityCheck(valid=False, reason=ELICITATION_UNSUPPORTED)
    return CapabilityCheck(valid=True)
