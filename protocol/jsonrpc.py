"""JSON-RPC 2.0 envelopes exchanged with the agent"""
import json
from typing import Any, Dict, Optional, Tuple

JSONRPC_VERSION = "2.0"

# Inbound methods
METHOD_INITIALIZE = "initialize"
METHOD_SESSION_UPDATE = "session/update"
METHOD_TOOLS_LIST = "tools/list"
METHOD_TOOLS_CALL = "tools/call"
METHOD_PING = "ping"
TOOL_NAMESPACE = "tools/"

# Outbound methods
METHOD_SESSION_NEW = "session/new"
METHOD_SESSION_PROMPT = "session/prompt"
OUTBOUND_METHODS = {METHOD_SESSION_NEW, METHOD_SESSION_PROMPT}

SESSION_REQUEST_ID = 1

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


def make_request(request_id: Any, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "method": method,
        "params": params if params is not None else {},
    }


def make_response(request_id: Any, result: Any) -> Dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "result": result,
    }


def make_error(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": {"code": code, "message": message},
    }


def encode(message: Dict[str, Any]) -> bytes:
    """One message per line"""
    return json.dumps(message).encode("utf-8") + b"\n"


def is_request(message: Dict[str, Any]) -> bool:
    return "method" in message and message.get("id") is not None


def is_notification(message: Dict[str, Any]) -> bool:
    return "method" in message and message.get("id") is None


def is_response(message: Dict[str, Any]) -> bool:
    return "method" not in message and ("result" in message or "error" in message)


def tool_name_from_method(method: Any) -> Optional[str]:
    """'tools/lookup' -> 'lookup'; None for anything else"""
    if not isinstance(method, str) or not method.startswith(TOOL_NAMESPACE):
        return None
    name = method[len(TOOL_NAMESPACE):]
    return name or None


def resolve_tool_call(message: Dict[str, Any]) -> Optional[Tuple[str, Dict[str, Any]]]:
    """(tool name, params) for a tool-call request, else None.

    Accepts both ``tools/<name>`` with the tool input as params and
    ``tools/call`` with ``{"name": ..., "arguments": {...}}``.
    """
    method = message.get("method")
    params = message.get("params")
    if not isinstance(params, dict):
        return None

    if method == METHOD_TOOLS_CALL:
        name = params.get("name")
        arguments = params.get("arguments", {})
        if isinstance(name, str) and name and isinstance(arguments, dict):
            return name, arguments
        return None

    if method == METHOD_TOOLS_LIST:
        return None

    name = tool_name_from_method(method)
    if name is None:
        return None
    return name, params
