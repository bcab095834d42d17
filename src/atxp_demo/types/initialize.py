"""Types for the initialize handshake."""

from typing import Annotated

from pydantic import Field

from atxp_demo.types.base import Meta, RequestParams, Result
from atxp_demo.types.common import ClientCapabilities, Implementation, ServerCapabilities


class InitializeRequestParams(RequestParams):
    """Parameters for the initialize request."""

    protocol_version: Annotated[str, Field(alias="protocolVersion")]
    capabilities: ClientCapabilities
    client_info: Annotated[Implementation, Field(alias="clientInfo")]


class InitializeResult(Result[Meta]):
    """Server's response to an initialize request."""

    protocol_version: Annotated[str, Field(alias="protocolVersion")]
    capabilities: ServerCapabilities
    server_info: Annotated[Implementation, Field(alias="serverInfo")]
    instructions: str | None = None
