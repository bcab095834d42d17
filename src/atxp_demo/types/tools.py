"""Types for tool listing and invocation."""

from typing import Annotated, Any, Literal

from pydantic import Field

from atxp_demo.types.base import MCPModel, Meta, RequestParams, Result
from atxp_demo.types.content import ContentBlock, TextContent


class JsonSchema(MCPModel):
    """A JSON Schema object."""

    type: Literal["object"] = "object"
    properties: dict[str, Any] | None = None
    required: list[str] | None = None


class Tool(MCPModel):
    """Definition of a tool the server provides."""

    input_schema: Annotated[JsonSchema, Field(alias="inputSchema")]
    name: str
    description: str | None = None
    title: str | None = None


class ListToolsResult(Result[Meta]):
    """Server's response to a tools/list request."""

    tools: list[Tool]
    next_cursor: Annotated[str | None, Field(alias="nextCursor")] = None


class CallToolRequestParams(RequestParams):
    """Parameters for tools/call request."""

    name: str
    arguments: dict[str, Any] | None = None


class CallToolResult(Result[Meta]):
    """Server's response to a tools/call request."""

    content: list[ContentBlock]
    structured_content: Annotated[dict[str, Any] | None, Field(alias="structuredContent")] = None
    is_error: Annotated[bool, Field(alias="isError")] = False

    @classmethod
    def text(cls, text: str, *, is_error: bool = False) -> "CallToolResult":
        """Build a result holding a single text block."""
        return cls(content=[TextContent(text=text)], is_error=is_error)
