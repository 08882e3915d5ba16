"""Batch agent engine: one process per prompt, tool calls scraped after exit"""
import asyncio
import logging
from typing import List, Optional

from core.bus import EventBus
from core.config import BridgeConfig
from core.errors import ToolInvocationError, TransportError
from core.events import Event, ProcessStartedEvent, ProcessExitEvent, StderrEvent, ToolCallEvent
from core.telemetry import telemetry
from protocol.batch_parser import BatchOutputParser
from protocol.framer import MessageFramer
from tools.guard import InvocationGuard
from tools.prompt import compose_prompt, compose_tool_instructions
from transport.process import ProcessTransport
from .protocol import EngineResult, ToolCallSummary

logger = logging.getLogger(__name__)


class BatchEngine:
    """Runs the agent CLI to completion with the composed prompt as an argument.

    No handshake happens in this mode. After exit, every whitelisted tool
    call found in the output is executed through the guard. Calls to
    tools outside the whitelist are skipped without a rejection record,
    unlike the interactive engine where the agent gets an error back.
    """

    name = "batch"

    def __init__(
        self,
        config: BridgeConfig,
        guard: InvocationGuard,
        bus: Optional[EventBus] = None,
        transport: Optional[ProcessTransport] = None,
        parser: Optional[BatchOutputParser] = None
    ):
        self.config = config
        self.guard = guard
        self.bus = bus
        self.transport = transport or ProcessTransport(
            pty_wrapper=config.pty_wrapper,
            terminate_timeout=config.timeouts.terminate
        )
        self.parser = parser or BatchOutputParser()
        self._stderr_lines = MessageFramer()

    @property
    def registry(self):
        return self.guard.registry

    async def start(self) -> Optional[str]:
        """Nothing to launch up front; each prompt spawns its own process"""
        logger.info(f"Initialized batch engine for {self.config.cli}")
        return None

    async def send_prompt(self, text: str) -> EngineResult:
        prompt = compose_prompt(
            text,
            instruction=self.config.instruction,
            tools_block=compose_tool_instructions(self.registry, mandatory=True)
        )
        logger.debug(f"Spawning batch agent with prompt: {prompt[:100]}...")

        stdout = bytearray()
        self._stderr_lines.reset()
        handle = await self.transport.launch(
            self.config.cli,
            self.config.build_args(prompt),
            working_directory=self.config.working_directory,
            env_overrides=self.config.env,
            on_stdout=stdout.extend,
            on_stderr=self._on_stderr
        )
        self._publish(ProcessStartedEvent(engine=self.name, pid=handle.pid, command=handle.command))

        async with telemetry.trace_task("batch.run", engine=self.name, pid=handle.pid):
            try:
                exit_code = await asyncio.wait_for(handle.wait(), timeout=self.config.timeouts.prompt)
            except asyncio.TimeoutError:
                logger.warning(f"Batch agent exceeded {self.config.timeouts.prompt}s, terminating")
                await handle.terminate()
                self._publish(ProcessExitEvent(engine=self.name, exit_code=None))
                return EngineResult(
                    timeout=True,
                    logs=self.guard.recent_calls(),
                    rejected_logs=self.guard.recent_rejections()
                )

        for line in self._stderr_lines.flush_lines():
            self._stderr_line(line)
        self._publish(ProcessExitEvent(engine=self.name, exit_code=exit_code))
        if exit_code != 0:
            raise TransportError(
                f"Agent exited with code {exit_code}: {handle.stderr_text[-500:]}",
                exit_code=exit_code,
                stderr=handle.stderr_text
            )

        parsed = self.parser.parse(stdout.decode("utf-8", errors="replace"))
        telemetry.log_metric("batch.tool_calls", len(parsed.calls), engine=self.name)
        tool_calls = await self._execute_calls(parsed.calls)

        return EngineResult(
            text=parsed.text,
            tool_calls=tool_calls,
            logs=self.guard.recent_calls(),
            rejected_logs=self.guard.recent_rejections()
        )

    async def _execute_calls(self, calls) -> List[ToolCallSummary]:
        summaries = []
        for call in calls:
            summary = ToolCallSummary(
                request_id=call.request_id,
                tool_name=call.tool_name,
                params=call.params,
                status="executing"
            )
            summaries.append(summary)

            if not self.registry.is_whitelisted(call.tool_name):
                logger.info(f"Skipping non-whitelisted tool call from batch output: {call.tool_name}")
                summary.status = "skipped"
                continue

            try:
                await self.guard.invoke(call.tool_name, call.params)
            except ToolInvocationError as e:
                logger.warning(f"Batch tool call failed: {e}")
                summary.status = "failed"
                summary.error = str(e)
            else:
                summary.status = "completed"

            self._publish(ToolCallEvent(
                engine=self.name,
                tool_name=call.tool_name,
                arguments=call.params,
                status=summary.status
            ))
        return summaries

    async def close(self) -> None:
        """Terminate a still-running batch process"""
        await self.transport.terminate()

    def _on_stderr(self, chunk: bytes):
        for line in self._stderr_lines.feed_lines(chunk):
            self._stderr_line(line)

    def _stderr_line(self, line: str):
        logger.debug(f"Batch agent stderr: {line}")
        self._publish(StderrEvent(engine=self.name, line=line))

    def _publish(self, event: Event):
        if self.bus is not None:
            self.bus.publish_nowait(event)
