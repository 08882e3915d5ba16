import asyncio
import json
import sys
from pathlib import Path

import pytest

from core.config import BridgeConfig, TimeoutConfig
from tools.guard import InvocationGuard
from tools.registry import ToolRegistry

FAKE_AGENT = str(Path(__file__).parent / "fake_agent.py")

LOOKUP_SCHEMA = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "description": "The search query"},
    },
    "required": ["query"],
}


def lookup(params):
    return {"found": False}


@pytest.fixture
def registry():
    registry = ToolRegistry()
    registry.register("lookup", "Retrieve business information", LOOKUP_SCHEMA, lookup)
    return registry


@pytest.fixture
def guard(registry):
    return InvocationGuard(registry)


def fake_agent_config(mode: str = "interactive", pty_wrapper: bool = False, **timeouts) -> BridgeConfig:
    timing = {"prompt": 10.0, "ready": 10.0, "session_grace": 0.05, "terminate": 2.0}
    timing.update(timeouts)
    return BridgeConfig(
        cli=sys.executable,
        mode="batch" if mode == "batch" else "interactive",
        interactive_args=[FAKE_AGENT, mode],
        batch_args=[FAKE_AGENT, mode],
        instruction="You answer questions about local businesses.",
        pty_wrapper=pty_wrapper,
        timeouts=TimeoutConfig(**timing),
    )


class FakeHandle:
    """Stands in for a ProcessHandle; records decoded writes"""

    def __init__(self):
        self.writes = []
        self.alive = True
        self.stderr_text = ""
        self.pid = 4242
        self.command = ["fake-agent"]

    def is_alive(self):
        return self.alive

    async def write(self, data: bytes):
        self.writes.append(json.loads(data.decode("utf-8")))

    def sent(self, method=None):
        return [w for w in self.writes if method is None or w.get("method") == method]

    def replies(self, request_id):
        return [w for w in self.writes if "method" not in w and w.get("id") == request_id]


async def drain(engine):
    """Run spawned request handlers to completion"""
    for _ in range(10):
        if not engine._tasks:
            return
        await asyncio.gather(*list(engine._tasks))


async def wait_for_write(handle, method, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not handle.sent(method):
        if loop.time() > deadline:
            raise AssertionError(f"{method} never written")
        await asyncio.sleep(0.01)
    return handle.sent(method)[-1]


def line(message) -> bytes:
    return json.dumps(message).encode("utf-8") + b"\n"
