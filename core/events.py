"""Event types published by bridge engines"""
from pydantic import BaseModel, Field
from typing import Literal, Optional, Any, Dict, List
from datetime import datetime


class Event(BaseModel):
    """Base event type"""
    type: str
    engine: str = "bridge"
    timestamp: float = Field(default_factory=lambda: datetime.now().timestamp())


class ProcessStartedEvent(Event):
    """Agent process spawned"""
    type: Literal["process_started"] = "process_started"
    pid: int
    command: List[str]


class ProcessExitEvent(Event):
    """Agent process exited (exit_code is None when we killed it)"""
    type: Literal["process_exit"] = "process_exit"
    exit_code: Optional[int] = None


class StderrEvent(Event):
    """Line written by the agent to stderr"""
    type: Literal["stderr"] = "stderr"
    line: str


class SessionReadyEvent(Event):
    """Agent assigned a session id"""
    type: Literal["session_ready"] = "session_ready"
    session_id: str


class SessionUpdateEvent(Event):
    """Push-style session/update notification from the agent"""
    type: Literal["session_update"] = "session_update"
    session_id: Optional[str] = None
    update: Dict[str, Any] = Field(default_factory=dict)


class ToolCallEvent(Event):
    """Agent tool call accepted by the guard"""
    type: Literal["tool_call"] = "tool_call"
    tool_name: str
    arguments: Dict[str, Any]
    status: Optional[str] = None


class ToolRejectedEvent(Event):
    """Agent tool call refused by the guard"""
    type: Literal["tool_rejected"] = "tool_rejected"
    tool_name: str
    reason: str


class ErrorEvent(Event):
    """Error event"""
    type: Literal["error"] = "error"
    message: str
    error_type: Optional[str] = None
