"""Recovers tool-call requests from a finished batch run's output.

Agent CLIs in batch mode print either plain text or a stream of JSON
envelopes (``{"type": "assistant", "message": {"content": [...]}}``,
``{"type": "text", "part": {"text": ...}}``, ``{"type": "result", ...}``).
A tool call the agent was told to print can therefore show up as its own raw
line or inside the text of an assistant envelope. Both sources are scanned
as one pass over their union; a call found in both is kept once.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from .framer import parse_line
from .jsonrpc import resolve_tool_call

logger = logging.getLogger(__name__)

SOURCE_ASSISTANT_TEXT = "assistant_text"
SOURCE_RAW_OUTPUT = "raw_output"


class BatchToolCall(BaseModel):
    """Tool-call request found in batch output"""
    request_id: Any = None
    tool_name: str
    params: Dict[str, Any] = Field(default_factory=dict)
    source: str = SOURCE_RAW_OUTPUT


class BatchParseResult(BaseModel):
    text: str = ""
    calls: List[BatchToolCall] = Field(default_factory=list)


def _envelope_text(obj: Dict[str, Any]) -> List[str]:
    """Text carried by one output envelope"""
    msg_type = obj.get("type")
    parts = []

    if msg_type == "assistant":
        message = obj.get("message", {})
        content = message.get("content", []) if isinstance(message, dict) else []
        if isinstance(content, str):
            parts.append(content)
        else:
            for block in content:
                if isinstance(block, dict) and block.get("type") == "text":
                    text = block.get("text", "")
                    if text:
                        parts.append(text)

    elif msg_type == "text":
        part = obj.get("part")
        text = part.get("text", "") if isinstance(part, dict) else obj.get("text", "")
        if text:
            parts.append(text)

    return parts


def extract_assistant_text(output: str) -> str:
    """Concatenated assistant text from all envelopes in the output"""
    parts = []
    for line in output.splitlines():
        obj = parse_line(line)
        if obj is not None:
            parts.extend(_envelope_text(obj))
    return "\n".join(parts)


def _result_text(output: str) -> Optional[str]:
    for line in output.splitlines():
        obj = parse_line(line)
        if obj is not None and obj.get("type") == "result" and isinstance(obj.get("result"), str):
            return obj["result"]
    return None


class BatchOutputParser:
    """Scans captured batch output for tool-namespaced JSON-RPC requests"""

    def find_tool_calls(self, output: str) -> List[BatchToolCall]:
        seen: Set[Tuple[str, str, str]] = set()
        calls = []

        sources = (
            (SOURCE_ASSISTANT_TEXT, extract_assistant_text(output)),
            (SOURCE_RAW_OUTPUT, output),
        )
        for source, text in sources:
            for line in text.splitlines():
                message = parse_line(line)
                if message is None:
                    continue
                resolved = resolve_tool_call(message)
                if resolved is None:
                    continue

                tool_name, params = resolved
                key = (
                    json.dumps(message.get("id")),
                    tool_name,
                    json.dumps(params, sort_keys=True, default=str),
                )
                if key in seen:
                    continue
                seen.add(key)

                calls.append(BatchToolCall(
                    request_id=message.get("id"),
                    tool_name=tool_name,
                    params=params,
                    source=source
                ))

        logger.debug(f"Found {len(calls)} tool call(s) in batch output")
        return calls

    def parse(self, output: str) -> BatchParseResult:
        text = extract_assistant_text(output)
        if not text:
            text = _result_text(output) or output.strip()
        return BatchParseResult(text=text, calls=self.find_tool_calls(output))
