"""AgentEngine protocol definition"""
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from tools.models import CallRecord, RejectionRecord


class ToolCallSummary(BaseModel):
    """What happened to one tool call the agent requested during a prompt"""
    request_id: Any = None
    tool_name: str
    params: Dict[str, Any] = Field(default_factory=dict)
    status: str
    error: Optional[str] = None


class EngineResult(BaseModel):
    """Outcome of one prompt; timeouts and agent errors are results, not exceptions"""
    text: str = ""
    tool_calls: List[ToolCallSummary] = Field(default_factory=list)
    logs: List[CallRecord] = Field(default_factory=list)
    rejected_logs: List[RejectionRecord] = Field(default_factory=list)
    timeout: bool = False
    error: Optional[Dict[str, Any]] = None
    stop_reason: Optional[str] = None


class AgentEngine(Protocol):
    """Unified interface for the interactive and batch agent transports"""

    name: str

    async def start(self) -> Optional[str]:
        """
        Prepare the engine.

        Returns:
            Session id assigned by the agent, or None when the transport has
            no session (batch) or the agent never became ready.
        """
        ...

    async def send_prompt(self, text: str) -> EngineResult:
        """
        Submit user content and wait for the agent to finish.

        Raises:
            TransportError: spawn failure or abnormal exit of the agent
        """
        ...

    async def close(self) -> None:
        """Terminate the agent process if running"""
        ...
