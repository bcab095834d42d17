"""Types for server-initiated elicitation in URL mode."""

from typing import Annotated, Literal

from pydantic import Field

from atxp_demo.types.base import Meta, RequestParams, Result

ELICITATION_CREATE_METHOD = "elicitation/create"


class ElicitRequestURLParams(RequestParams):
    """Parameters for a URL-mode elicitation/create request.

    The user completes the interaction out-of-band at ``url``; the client only
    reports whether it was accepted.
    """

    mode: Literal["url"] = "url"
    elicitation_id: Annotated[str, Field(alias="elicitationId")]
    url: str
    message: str


class ElicitResult(Result[Meta]):
    """The client's answer to an elicitation/create request."""

    action: Literal["accept", "decline"]
