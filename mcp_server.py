import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from errors import ClassifiedError, ErrorKind
from mcp_types import (
    INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND,
    JsonRpcError, JsonRpcRequest, JsonRpcResponse,
    McpCallToolParams, McpCallToolResult, McpCapabilities,
    McpInitializeResult, McpListToolsResult, McpServerInfo, McpTool,
)

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


def describe_error(error: ClassifiedError) -> str:
    """User-facing text for a failed tool call."""
    if error.kind is ErrorKind.UNAUTHORIZED:
        return f"{error.service} rejected the configured credentials. Check the API key."
    if error.kind is ErrorKind.NOT_FOUND:
        return f"{error.service} has nothing at '{error.endpoint}'. Check the ID or name."
    if error.kind is ErrorKind.RATE_LIMITED:
        return f"{error.service} is rate limiting requests. Try again in {error.retry_after_seconds:g} seconds."
    if error.kind is ErrorKind.TIMEOUT:
        return f"{error.service} did not respond within {error.timeout_ms} ms."
    if error.kind is ErrorKind.NETWORK:
        return f"Could not reach {error.service}: {error.message}"
    if error.kind is ErrorKind.VALIDATION:
        return f"{error.service} rejected the request: {error.message}"
    if error.kind is ErrorKind.SERVER_ERROR:
        return f"{error.service} failed with HTTP {error.status_code}: {error.message}"
    return f"{error.service} error: {error.message}"


class McpServer:
    def __init__(self, name: str = "media-mcp", version: str = "1.0.0"):
        self.server_info = McpServerInfo(name=name, version=version)
        self.tools: Dict[str, McpTool] = {}
        self.tool_handlers: Dict[str, ToolHandler] = {}

    def register_tool(self, name: str, description: str, input_schema: Dict[str, Any], handler: ToolHandler):
        """Register a tool with the MCP server"""
        if name in self.tools:
            raise ValueError(f"Tool '{name}' is already registered")
        self.tools[name] = McpTool(name=name, description=description, inputSchema=input_schema)
        self.tool_handlers[name] = handler

    async def handle_jsonrpc_request(self, request_data: Any) -> Optional[Dict[str, Any]]:
        """Handle one JSON-RPC 2.0 request. Returns None for notifications."""
        try:
            request = JsonRpcRequest.model_validate(request_data)
        except ValidationError as e:
            return self._create_error_response(None, INVALID_REQUEST, "Invalid Request", str(e))

        if request.method.startswith("notifications/"):
            return None

        try:
            if request.method == "initialize":
                return self._handle_initialize(request)
            elif request.method == "tools/list":
                return self._handle_list_tools(request)
            elif request.method == "tools/call":
                return await self._handle_call_tool(request)
            elif request.method == "resources/list":
                return self._create_success_response(request.id, {"resources": []})
            elif request.method == "prompts/list":
                return self._create_success_response(request.id, {"prompts": []})
            elif request.method == "ping":
                return self._create_success_response(request.id, {})
            else:
                return self._create_error_response(request.id, METHOD_NOT_FOUND, "Method not found")
        except Exception as e:
            logger.exception("Unhandled error in %s", request.method)
            return self._create_error_response(request.id, INTERNAL_ERROR, "Internal error", str(e))

    def _handle_initialize(self, request: JsonRpcRequest) -> Dict[str, Any]:
        result = McpInitializeResult(
            capabilities=McpCapabilities(tools={"listChanged": False}, resources={}, prompts={}),
            serverInfo=self.server_info,
        )
        return self._create_success_response(request.id, result.model_dump())

    def _handle_list_tools(self, request: JsonRpcRequest) -> Dict[str, Any]:
        result = McpListToolsResult(tools=list(self.tools.values()))
        return self._create_success_response(request.id, result.model_dump())

    async def _handle_call_tool(self, request: JsonRpcRequest) -> Dict[str, Any]:
        try:
            params = McpCallToolParams.model_validate(request.params or {})
        except ValidationError as e:
            return self._create_error_response(request.id, INVALID_PARAMS, "Invalid params", str(e))

        handler = self.tool_handlers.get(params.name)
        if handler is None:
            return self._create_error_response(request.id, INVALID_PARAMS, f"Tool '{params.name}' not found")

        try:
            result = await handler(params.arguments or {})
        except ClassifiedError as e:
            logger.warning("Tool %s failed: %s (%s)", params.name, e.message, e.kind.value)
            mcp_result = McpCallToolResult.text(f"Error: {describe_error(e)}", is_error=True)
        except (KeyError, ValueError, TypeError) as e:
            mcp_result = McpCallToolResult.text(f"Invalid arguments for {params.name}: {e}", is_error=True)
        except Exception as e:
            logger.exception("Tool %s raised", params.name)
            mcp_result = McpCallToolResult.text(f"Tool execution error: {e}", is_error=True)
        else:
            if result is None:
                text = "Done."
            elif isinstance(result, (dict, list)):
                text = json.dumps(result, indent=2)
            else:
                text = str(result)
            mcp_result = McpCallToolResult.text(text)

        return self._create_success_response(request.id, mcp_result.model_dump())

    def _create_success_response(self, request_id: Any, result: Any) -> Dict[str, Any]:
        """Create a successful JSON-RPC response"""
        response = JsonRpcResponse(id=request_id, result=result)
        return response.model_dump(exclude_none=True)

    def _create_error_response(self, request_id: Any, code: int, message: str, data: Any = None) -> Dict[str, Any]:
        """Create an error JSON-RPC response"""
        error = JsonRpcError(code=code, message=message, data=data)
        response = JsonRpcResponse(id=request_id, error=error.model_dump(exclude_none=True))
        return response.model_dump(exclude_none=True)
