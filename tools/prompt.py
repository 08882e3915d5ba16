"""Renders the tool whitelist into agent-facing instructions"""
import json
from typing import Any, Dict, List

from protocol.jsonrpc import make_request, TOOL_NAMESPACE
from .registry import ToolRegistry

SECTION_DELIMITER = "\n\n---\n\n"

MANDATORY_HEADER = (
    "## Available Tools\n\n"
    "You MUST use the tools below to answer. Request a tool by printing the "
    "call envelope shown for it as a single JSON object on its own line, "
    "with no surrounding text or code fences."
)

OPTIONAL_HEADER = (
    "## Available Tools\n\n"
    "You may call the tools below when they help answer. Each call is a "
    "JSON-RPC request whose method is the tool name prefixed with "
    f"'{TOOL_NAMESPACE}'."
)

_PLACEHOLDERS = {
    "number": 0,
    "integer": 0,
    "boolean": False,
    "array": [],
    "object": {},
    "null": None,
}


def example_params(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Placeholder parameters shaped like the schema's properties"""
    params = {}
    for name, prop in (schema.get("properties") or {}).items():
        prop = prop if isinstance(prop, dict) else {}
        if "example" in prop:
            params[name] = prop["example"]
        elif "default" in prop:
            params[name] = prop["default"]
        else:
            params[name] = _PLACEHOLDERS.get(prop.get("type"), f"<{name}>")
    return params


def compose_tool_instructions(registry: ToolRegistry, mandatory: bool = True) -> str:
    """Instruction block for every whitelisted tool; empty when there are none"""
    definitions = registry.definitions()
    if not definitions:
        return ""

    names = ", ".join(d.name for d in definitions)
    blocks: List[str] = [
        MANDATORY_HEADER if mandatory else OPTIONAL_HEADER,
        f"Only these tools exist: {names}. Calls to any other tool are rejected.",
    ]

    for index, definition in enumerate(definitions, start=1):
        envelope = make_request(
            index,
            f"{TOOL_NAMESPACE}{definition.name}",
            example_params(definition.input_schema)
        )
        blocks.append("\n".join([
            f"### Tool: {definition.name}",
            definition.description,
            "",
            "Input schema:",
            json.dumps(definition.input_schema, indent=2),
            "",
            "Call syntax:",
            json.dumps(envelope),
        ]))

    return "\n\n".join(blocks)


def compose_prompt(content: str, instruction: str = "", tools_block: str = "") -> str:
    """instruction, then tool block, then the user's content"""
    sections = [s for s in (instruction, tools_block, content) if s]
    return SECTION_DELIMITER.join(sections)
