import json

from tools.prompt import (
    SECTION_DELIMITER,
    compose_prompt,
    compose_tool_instructions,
    example_params,
)
from tools.registry import ToolRegistry


def test_empty_whitelist_composes_nothing():
    registry = ToolRegistry()
    assert compose_tool_instructions(registry) == ""

    prompt = compose_prompt("Where is it?", instruction="Base instruction.", tools_block="")
    assert prompt == "Base instruction." + SECTION_DELIMITER + "Where is it?"
    assert "Available Tools" not in prompt


def test_unwhitelisted_definitions_are_not_described():
    registry = ToolRegistry()
    registry.register("secret", "hidden", None, lambda p: None, whitelisted=False)

    assert compose_tool_instructions(registry) == ""


def test_block_describes_each_tool_with_call_syntax(registry):
    block = compose_tool_instructions(registry)

    assert block.startswith("## Available Tools")
    assert "You MUST use the tools" in block
    assert "### Tool: lookup" in block
    assert "Retrieve business information" in block
    assert '"required": [\n    "query"\n  ]' in block

    call_line = block.splitlines()[-1]
    envelope = json.loads(call_line)
    assert envelope == {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "tools/lookup",
        "params": {"query": "<query>"},
    }


def test_optional_header_for_interactive_use(registry):
    block = compose_tool_instructions(registry, mandatory=False)
    assert "You may call the tools" in block
    assert "MUST" not in block


def test_prompt_ordering(registry):
    block = compose_tool_instructions(registry)
    prompt = compose_prompt("user question", instruction="system text", tools_block=block)

    assert prompt.index("system text") < prompt.index("### Tool: lookup") < prompt.index("user question")
    assert prompt.count(SECTION_DELIMITER) == 2


def test_example_params_follow_schema_types():
    schema = {
        "type": "object",
        "properties": {
            "query": {"type": "string"},
            "limit": {"type": "integer"},
            "exact": {"type": "boolean"},
            "tags": {"type": "array"},
            "city": {"type": "string", "example": "Agra"},
            "page": {"type": "integer", "default": 1},
        },
    }

    assert example_params(schema) == {
        "query": "<query>",
        "limit": 0,
        "exact": False,
        "tags": [],
        "city": "Agra",
        "page": 1,
    }
    assert example_params({}) == {}
