"""Types shared by the initialize handshake."""

from typing import Annotated, Any

from pydantic import Field

from atxp_demo.types.base import MCPModel


class Implementation(MCPModel):
    """Describes the name and version of a client or server implementation."""

    name: str
    version: str
    title: str | None = None
    website_url: Annotated[str | None, Field(alias="websiteUrl")] = None


class ClientCapabilities(MCPModel):
    """Capabilities that a client may support.

    ``elicitation`` is kept loose: older clients announce it as ``true`` while
    newer ones send an object listing the supported modes.
    """

    experimental: dict[str, Any] | None = None
    roots: dict[str, Any] | None = None
    sampling: dict[str, Any] | None = None
    elicitation: dict[str, Any] | bool | None = None


class ServerCapabilities(MCPModel):
    """Capabilities that a server may support."""

    experimental: dict[str, Any] | None = None
    logging: dict[str, Any] | None = None
    tools: dict[str, Any] | None = None
