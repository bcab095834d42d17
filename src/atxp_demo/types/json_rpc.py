"""Minimum amount of base models to represent the JSON-RPC envelope."""

from typing import Annotated, Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

JSONRPC_VERSION: Final[str] = "2.0"

PARSE_ERROR: Final[int] = -32700
INVALID_REQUEST: Final[int] = -32600
METHOD_NOT_FOUND: Final[int] = -32601
INVALID_PARAMS: Final[int] = -32602
INTERNAL_ERROR: Final[int] = -32603

# Implementation-defined server error, used for transport-level refusals
# (bad session reference, unsupported HTTP verb).
SERVER_ERROR: Final[int] = -32000

RequestId = Annotated[int, Field(strict=True)] | str


class JSONRPCBase(BaseModel):
    """Base class for all JSON-RPC messages."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION


class JSONRPCRequest(JSONRPCBase):
    """A request that expects a response."""

    id: RequestId
    method: str
    params: dict[str, Any] | None = None


class JSONRPCNotification(JSONRPCBase):
    """A notification which does not expect a response."""

    method: str
    params: dict[str, Any] | None = None


class ErrorData(BaseModel):
    """Error information in a JSON-RPC error response."""

    model_config = ConfigDict(extra="allow")

    code: int
    message: str
    data: Any | None = None


class JSONRPCResultResponse(JSONRPCBase):
    """A successful (non-error) response to a request."""

    id: RequestId
    result: dict[str, Any]


class JSONRPCErrorResponse(JSONRPCBase):
    """A response to a request that indicates an error occurred."""

    id: RequestId | None = None
    error: ErrorData


JSONRPCResponse = JSONRPCResultResponse | JSONRPCErrorResponse
JSONRPCMessage = JSONRPCRequest | JSONRPCNotification | JSONRPCResponse

JSONRPCMessageAdapter: TypeAdapter[JSONRPCMessage] = TypeAdapter(JSONRPCMessage)


def error_response(code: int, message: str, request_id: RequestId | None = None) -> JSONRPCErrorResponse:
    """Build an error envelope for the given code and message."""
    return JSONRPCErrorResponse(id=request_id, error=ErrorData(code=code, message=message))
