"""The ``add`` tool and the handler set that serves it behind the payment gate."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ValidationError

from atxp_demo.config import Settings
from atxp_demo.context import RequestContext
from atxp_demo.exceptions import ProtocolError
from atxp_demo.payment.gate import PaymentGate
from atxp_demo.payment.types import Charge, PaymentDestination
from atxp_demo.server import LowLevelServer
from atxp_demo.types.base import EmptyResult
from atxp_demo.types.json_rpc import INVALID_PARAMS, ErrorData, JSONRPCNotification, JSONRPCRequest
from atxp_demo.types.tools import CallToolRequestParams, CallToolResult, JsonSchema, ListToolsResult, Tool

logger = logging.getLogger(__name__)

Number = int | float


class AddArguments(BaseModel):
    a: Number
    b: Number


ADD_TOOL = Tool(
    name="add",
    description="Use this tool to add two numbers together.",
    input_schema=JsonSchema(
        properties={
            "a": {"type": "number", "description": "The first number to add"},
            "b": {"type": "number", "description": "The second number to add"},
        },
        required=["a", "b"],
    ),
)


def add(a: Number, b: Number) -> Number:
    return a + b


def _invalid_params(message: str) -> ProtocolError:
    return ProtocolError(ErrorData(code=INVALID_PARAMS, message=message))


def create_tool_server(gate: PaymentGate, settings: Settings) -> LowLevelServer:
    """Build the handler set for one session.

    ``tools/call`` charges ``settings.tool_price`` to the calling session
    before ``add`` runs.
    """
    server = LowLevelServer(name=settings.server_name, version=settings.server_version)
    destination = PaymentDestination(address=settings.payment_destination, network=settings.payment_network)

    @server.notification_handler("notifications/initialized")
    async def initialized(ctx: RequestContext, notification: JSONRPCNotification) -> None:
        logger.debug("Session %s finished initializing", ctx.session_id)

    @server.request_handler("ping")
    async def ping(ctx: RequestContext, request: JSONRPCRequest) -> EmptyResult:
        return EmptyResult()

    @server.request_handler("tools/list")
    async def list_tools(ctx: RequestContext, request: JSONRPCRequest) -> ListToolsResult:
        return ListToolsResult(tools=[ADD_TOOL])

    @server.request_handler("tools/call")
    async def call_tool(ctx: RequestContext, request: JSONRPCRequest) -> CallToolResult:
        try:
            params = CallToolRequestParams.model_validate(request.params or {})
        except ValidationError as e:
            raise _invalid_params(f"Invalid tools/call params: {e}") from e
        if params.name != ADD_TOOL.name:
            raise _invalid_params(f"Unknown tool: {params.name}")

        try:
            arguments = AddArguments.model_validate(params.arguments or {})
        except ValidationError as e:
            return CallToolResult.text(f"Invalid arguments for tool add: {e}", is_error=True)

        charge = Charge(
            source=ctx.session_id,
            destination=destination,
            amount=settings.tool_price,
            currency=settings.payment_currency,
            payee_name=settings.payee_name,
        )

        async def run_add() -> CallToolResult:
            logger.debug("Running add(%s, %s) for session %s", arguments.a, arguments.b, ctx.session_id)
            return CallToolResult.text(str(add(arguments.a, arguments.b)))

        return await gate.guard(charge, run_add, ctx)

    return server
