"""Protocol-level session state from the init handshake."""

from __future__ import annotations

from dataclasses import dataclass

from atxp_demo.types.common import ClientCapabilities, Implementation


@dataclass(frozen=True)
class SessionInfo:
    """Immutable protocol-level session state, created during the init handshake.

    Transport-level state (the channel, pending elicitations) lives on the
    registry's Session, not here.
    """

    client_info: Implementation
    client_capabilities: ClientCapabilities
    protocol_version: str
