from typing import Any, Dict, List, Optional, Union, Literal
from pydantic import BaseModel

PROTOCOL_VERSION = "2024-11-05"

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

class JsonRpcRequest(BaseModel):
    jsonrpc: Literal["2.0"] = "2.0"
    id: Union[str, int, None] = None
    method: str
    params: Optional[Dict[str, Any]] = None

class JsonRpcResponse(BaseModel):
    jsonrpc: Literal["2.0"] = "2.0"
    id: Union[str, int, None] = None
    result: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None

class JsonRpcError(BaseModel):
    code: int
    message: str
    data: Optional[Any] = None

class McpTool(BaseModel):
    name: str
    description: str
    inputSchema: Dict[str, Any]

class McpCapabilities(BaseModel):
    tools: Optional[Dict[str, Any]] = None
    resources: Optional[Dict[str, Any]] = None
    prompts: Optional[Dict[str, Any]] = None

class McpServerInfo(BaseModel):
    name: str
    version: str

class McpInitializeResult(BaseModel):
    protocolVersion: str = PROTOCOL_VERSION
    capabilities: McpCapabilities
    serverInfo: McpServerInfo

class McpListToolsResult(BaseModel):
    tools: List[McpTool]

class McpCallToolParams(BaseModel):
    name: str
    arguments: Optional[Dict[str, Any]] = None

class McpTextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str

class McpCallToolResult(BaseModel):
    content: List[McpTextContent]
    isError: bool = False

    @classmethod
    def text(cls, text: str, is_error: bool = False) -> "McpCallToolResult":
        return cls(content=[McpTextContent(text=text)], isError=is_error)
