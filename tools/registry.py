"""Tool registry with an explicit whitelist"""
from typing import Any, Dict, List, Optional
import logging

from .models import ToolDefinition, ToolHandler

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Tool definitions keyed by name plus the whitelist of callable names.

    Whitelist membership is authoritative: a definition whose name is not
    whitelisted never executes, and a whitelisted name without a definition
    is an internal error at invocation time.

    Registration mutates shared maps without a lock; register tools before
    the engine starts serving the agent.
    """

    def __init__(self):
        self._definitions: Dict[str, ToolDefinition] = {}
        # dict keeps registration order for announcements and error messages
        self._whitelist: Dict[str, None] = {}

    def register(
        self,
        name: str,
        description: str,
        schema: Optional[Dict[str, Any]],
        handler: ToolHandler,
        whitelisted: bool = True
    ) -> ToolDefinition:
        """Add or replace a tool (last write wins)"""
        if not name:
            raise ValueError("Tool name must not be empty")
        if not callable(handler):
            raise TypeError(f"Handler for tool '{name}' is not callable")

        definition = ToolDefinition(
            name=name,
            description=description,
            input_schema=schema or {"type": "object", "properties": {}},
            handler=handler
        )
        if name in self._definitions:
            logger.info(f"Replacing tool definition: {name}")
        self._definitions[name] = definition

        if whitelisted:
            self._whitelist[name] = None
        logger.info(f"Registered tool: {name} (whitelisted={whitelisted})")
        return definition

    def allow(self, name: str):
        """Whitelist a name"""
        self._whitelist[name] = None

    def revoke(self, name: str):
        """Remove a name from the whitelist, keeping its definition"""
        self._whitelist.pop(name, None)
        logger.info(f"Revoked tool from whitelist: {name}")

    def is_whitelisted(self, name: str) -> bool:
        return name in self._whitelist

    @property
    def whitelist(self) -> List[str]:
        """Snapshot of the whitelisted names"""
        return list(self._whitelist)

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._definitions.get(name)

    def definitions(self) -> List[ToolDefinition]:
        """Definitions of whitelisted tools, in whitelist order"""
        return [self._definitions[n] for n in self._whitelist if n in self._definitions]

    def __len__(self) -> int:
        return len(self._whitelist)
