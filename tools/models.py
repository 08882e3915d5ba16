"""Tool definitions and audit records"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

ToolHandler = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ToolDefinition(BaseModel):
    """A host tool; immutable once registered"""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    handler: ToolHandler

    def advertise(self) -> Dict[str, Any]:
        """Entry for the capability announcement"""
        return {
            "type": "tool",
            "name": self.name,
            "description": self.description,
            "whitelisted": True,
            "inputSchema": self.input_schema,
        }


class CallStatus(str, Enum):
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class CallRecord(BaseModel):
    """Accepted invocation; status/result/error are updated once in place"""
    timestamp: str = Field(default_factory=utc_now)
    tool_name: str
    params: Dict[str, Any] = Field(default_factory=dict)
    status: CallStatus = CallStatus.EXECUTING
    result: Any = None
    error: Optional[str] = None


class RejectionRecord(BaseModel):
    """Invocation refused because the tool is not whitelisted"""
    model_config = ConfigDict(frozen=True)

    timestamp: str = Field(default_factory=utc_now)
    attempted_tool: str
    reason: str
    available_tools: List[str]
