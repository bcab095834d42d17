"""Content block types used in tool results."""

from typing import Literal

from atxp_demo.types.base import MCPModel


class TextContent(MCPModel):
    """Text provided to or from an LLM."""

    type: Literal["text"] = "text"
    text: str


ContentBlock = TextContent
