"""Wire types for the JSON-RPC envelope and the protocol methods this server speaks."""

from atxp_demo.types.base import LATEST_PROTOCOL_VERSION, EmptyResult
from atxp_demo.types.common import ClientCapabilities, Implementation, ServerCapabilities
from atxp_demo.types.content import TextContent
from atxp_demo.types.elicitation import ELICITATION_CREATE_METHOD, ElicitRequestURLParams, ElicitResult
from atxp_demo.types.initialize import InitializeRequestParams, InitializeResult
from atxp_demo.types.json_rpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    SERVER_ERROR,
    ErrorData,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCMessageAdapter,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    JSONRPCResultResponse,
    RequestId,
)
from atxp_demo.types.tools import CallToolRequestParams, CallToolResult, JsonSchema, ListToolsResult, Tool

__all__ = [
    "ELICITATION_CREATE_METHOD",
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "LATEST_PROTOCOL_VERSION",
    "METHOD_NOT_FOUND",
    "PARSE_ERROR",
    "SERVER_ERROR",
    "CallToolRequestParams",
    "CallToolResult",
    "ClientCapabilities",
    "ElicitRequestURLParams",
    "ElicitResult",
    "EmptyResult",
    "ErrorData",
    "Implementation",
    "InitializeRequestParams",
    "InitializeResult",
    "JSONRPCErrorResponse",
    "JSONRPCMessage",
    "JSONRPCMessageAdapter",
    "JSONRPCNotification",
    "JSONRPCRequest",
    "JSONRPCResponse",
    "JSONRPCResultResponse",
    "JsonSchema",
    "ListToolsResult",
    "RequestId",
    "ServerCapabilities",
    "TextContent",
    "Tool",
]
