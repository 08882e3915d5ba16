"""Error taxonomy for the agent bridge"""
from typing import List, Optional


class BridgeError(Exception):
    """Base class for all bridge errors"""


class ConfigurationError(BridgeError):
    """Invalid or missing bridge configuration"""


class TransportError(BridgeError):
    """Agent process could not be spawned, died, or exited abnormally"""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class SessionNotReadyError(TransportError):
    """Prompt issued before the agent assigned a session id"""


class ToolInvocationError(BridgeError):
    """Base for failures at the tool invocation boundary"""

    code: int = -32603

    def __init__(self, message: str, tool_name: str):
        super().__init__(message)
        self.tool_name = tool_name


class WhitelistViolation(ToolInvocationError):
    """Agent asked for a tool that is not whitelisted"""

    code = -32001

    def __init__(self, tool_name: str, available_tools: List[str]):
        message = (
            f"Tool not available: '{tool_name}'. "
            f"Only these tools are available: {', '.join(available_tools)}"
        )
        super().__init__(message, tool_name)
        self.available_tools = list(available_tools)


class UnknownToolError(ToolInvocationError):
    """Tool is whitelisted but has no registered handler"""

    code = -32002

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}", tool_name)


class HandlerFailure(ToolInvocationError):
    """Tool handler raised while executing"""

    code = -32603

    def __init__(self, tool_name: str, error: BaseException):
        super().__init__(f"Tool '{tool_name}' failed: {error}", tool_name)
        self.error = error
