"""Agent Bridge - host-facing facade over the protocol engines"""
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from core.bus import EventBus
from core.config import BridgeConfig, load_config
from engines.batch_engine import BatchEngine
from engines.interactive_engine import InteractiveEngine
from engines.protocol import AgentEngine, EngineResult
from tools.guard import InvocationGuard
from tools.models import ToolHandler
from tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class AgentBridge:
    """
    Owns one tool registry, one invocation guard and one engine.

    Each bridge is independent; concurrent sessions need separate bridges
    rather than a shared registry.

    Usage:
        bridge = AgentBridge(BridgeConfig(cli="opencode", mode="batch"))
        bridge.register_tool("lookup", "Find a business", schema, handler)
        async with bridge:
            result = await bridge.process_chat("What is the phone number?")
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        registry: Optional[ToolRegistry] = None,
        bus: Optional[EventBus] = None
    ):
        self.config = config or BridgeConfig()
        self.registry = registry or ToolRegistry()
        self.guard = InvocationGuard(self.registry)
        self.bus = bus
        self.engine: AgentEngine = self._create_engine()

    @classmethod
    def from_file(cls, config_path: Path, **kwargs) -> "AgentBridge":
        """Build a bridge from a YAML configuration file"""
        return cls(load_config(config_path), **kwargs)

    def _create_engine(self) -> AgentEngine:
        if self.config.mode == "batch":
            engine = BatchEngine(self.config, self.guard, bus=self.bus)
        else:
            engine = InteractiveEngine(self.config, self.guard, bus=self.bus)
        logger.info(f"Using {engine.name} engine for {self.config.cli}")
        return engine

    def register_tool(
        self,
        name: str,
        description: str,
        schema: Optional[Dict[str, Any]],
        handler: ToolHandler,
        whitelisted: bool = True
    ):
        """Register a tool; do this before start()"""
        return self.registry.register(name, description, schema, handler, whitelisted=whitelisted)

    async def start(self) -> Optional[str]:
        return await self.engine.start()

    async def process_chat(self, content: str) -> EngineResult:
        """Send user content to the agent and collect text, tool calls and logs"""
        return await self.engine.send_prompt(content)

    async def invoke_tool(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Invoke a tool through the guard directly"""
        return await self.guard.invoke(name, params)

    async def close(self):
        await self.engine.close()

    async def __aenter__(self) -> "AgentBridge":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
