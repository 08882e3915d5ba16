"""Bridge configuration models and loader"""
from pydantic import BaseModel, Field, ValidationError
from typing import Dict, List, Optional, Literal
from pathlib import Path
import yaml
import logging

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class TimeoutConfig(BaseModel):
    """Timeouts in seconds"""
    prompt: float = 120.0
    ready: float = 30.0
    session_grace: float = 1.0
    terminate: float = 5.0


class ServerInfo(BaseModel):
    """Identity announced to the agent during the handshake"""
    name: str = "Agent Bridge ACP Server"
    version: str = "1.0.0"
    protocol_version: str = "1.0"


class BridgeConfig(BaseModel):
    """Agent process and protocol configuration"""
    cli: str = "opencode"
    model: Optional[str] = None
    instruction: str = ""
    mode: Literal["interactive", "batch"] = "interactive"
    interactive_args: List[str] = Field(default_factory=lambda: ["acp"])
    batch_args: List[str] = Field(default_factory=lambda: ["run"])
    working_directory: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    pty_wrapper: bool = True
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    server: ServerInfo = Field(default_factory=ServerInfo)

    def build_args(self, prompt: Optional[str] = None) -> List[str]:
        """Arguments (without the executable) for the configured mode"""
        if self.mode == "batch":
            args = list(self.batch_args)
        else:
            args = list(self.interactive_args)

        if self.model:
            args.extend(["--model", self.model])

        if prompt is not None:
            args.append(prompt)
        return args


def load_config(path: Path) -> BridgeConfig:
    """Load a BridgeConfig from a YAML file"""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    logger.info(f"Loading bridge configuration from {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    try:
        config = BridgeConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid bridge configuration in {path}: {e}") from e

    logger.info(f"Loaded bridge configuration: cli={config.cli} mode={config.mode}")
    return config
