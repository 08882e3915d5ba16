"""Interactive agent engine: duplex JSON-RPC over the agent's stdio"""
import asyncio
import logging
import os
from typing import Any, Dict, List, Optional, Set

from core.bus import EventBus
from core.config import BridgeConfig
from core.errors import SessionNotReadyError, ToolInvocationError, TransportError, WhitelistViolation
from core.events import (
    Event, ProcessStartedEvent, ProcessExitEvent, StderrEvent,
    SessionReadyEvent, SessionUpdateEvent, ToolCallEvent, ToolRejectedEvent
)
from core.telemetry import telemetry
from protocol import jsonrpc
from protocol.framer import MessageFramer
from protocol.session import RpcOutcome, SessionStateMachine
from tools.guard import InvocationGuard
from tools.prompt import compose_prompt, compose_tool_instructions
from transport.process import ProcessHandle, ProcessTransport
from .protocol import EngineResult, ToolCallSummary

logger = logging.getLogger(__name__)


class InteractiveEngine:
    """Long-running agent process speaking newline-delimited JSON-RPC.

    The agent opens with ``initialize`` (answered with our capabilities),
    we create a session with ``session/new`` after a short grace delay, and
    each prompt is a ``session/prompt`` request. While a prompt is
    outstanding the agent calls back into ``tools/<name>`` and streams
    ``session/update`` notifications.
    """

    name = "interactive"

    def __init__(
        self,
        config: BridgeConfig,
        guard: InvocationGuard,
        bus: Optional[EventBus] = None,
        transport: Optional[ProcessTransport] = None
    ):
        self.config = config
        self.guard = guard
        self.bus = bus
        self.transport = transport or ProcessTransport(
            pty_wrapper=config.pty_wrapper,
            terminate_timeout=config.timeouts.terminate
        )
        self.framer = MessageFramer()
        self._stderr_lines = MessageFramer()
        self.machine = SessionStateMachine(instruction=config.instruction)
        self.handle: Optional[ProcessHandle] = None
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()
        self._prompt_lock = asyncio.Lock()
        self._update_chunks: List[str] = []
        self._turn_calls: List[ToolCallSummary] = []

    @property
    def registry(self):
        return self.guard.registry

    @property
    def session_id(self) -> Optional[str]:
        return self.machine.session.session_id

    def capabilities(self) -> Dict[str, Any]:
        """Handshake response announcing the whitelisted tools"""
        server = self.config.server
        result = {
            "protocolVersion": server.protocol_version,
            "serverInfo": {
                "name": server.name,
                "version": server.version,
            },
            "securityConfiguration": {
                "toolWhitelistEnabled": True,
                "allowedTools": self.registry.whitelist,
                "rejectionBehavior": "strict",
            },
            "agentCapabilities": [d.advertise() for d in self.registry.definitions()],
        }
        if self.machine.session.instruction:
            result["instructions"] = self.machine.session.instruction
        return result

    async def start(self) -> Optional[str]:
        """Launch the agent and wait for its session (None on ready timeout)"""
        if self.handle is not None and self.handle.is_alive() and self.machine.is_ready:
            return self.session_id

        self.framer.reset()
        self._stderr_lines.reset()
        self._generation += 1
        generation = self._generation

        self.handle = await self.transport.launch(
            self.config.cli,
            self.config.build_args(),
            working_directory=self.config.working_directory,
            env_overrides=self.config.env,
            on_stdout=self._on_stdout,
            on_stderr=self._on_stderr,
            on_exit=lambda code: self._on_exit(code, generation)
        )
        session_request_id = self.machine.begin()
        self._publish(ProcessStartedEvent(engine=self.name, pid=self.handle.pid, command=self.handle.command))
        self._spawn(self._create_session(session_request_id))

        session_id = await self.machine.wait_ready(self.config.timeouts.ready)
        if session_id:
            telemetry.session_event("ready", session_id=session_id)
            self._publish(SessionReadyEvent(engine=self.name, session_id=session_id))
        return session_id

    async def send_prompt(self, text: str) -> EngineResult:
        """Submit a prompt and wait for its response, error, or timeout"""
        async with self._prompt_lock:
            if self.handle is None or not self.handle.is_alive():
                logger.info("Agent process not running, launching")
                await self.start()

            if not self.machine.is_ready:
                raise SessionNotReadyError("Agent session is not ready; no session id was assigned")

            prompt = compose_prompt(
                text,
                instruction=self.machine.session.instruction,
                tools_block=compose_tool_instructions(self.registry, mandatory=False)
            )

            self._update_chunks = []
            self._turn_calls = []
            request_id = self.machine.next_request_id()
            future = self.machine.track(request_id, jsonrpc.METHOD_SESSION_PROMPT, self.config.timeouts.prompt)

            async with telemetry.trace_task("prompt.roundtrip", engine=self.name, request_id=request_id):
                try:
                    await self._send(jsonrpc.make_request(request_id, jsonrpc.METHOD_SESSION_PROMPT, {
                        "sessionId": self.session_id,
                        "prompt": [{"type": "text", "text": prompt}],
                    }))
                except TransportError:
                    self.machine.discard(request_id)
                    raise
                outcome = await future

            return self._build_result(outcome)

    async def close(self) -> None:
        """Terminate the agent and drop in-flight work"""
        logger.info("Closing interactive engine")
        await self.transport.terminate()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _create_session(self, request_id: int):
        """Send session/new once the agent has had time to start listening"""
        await asyncio.sleep(self.config.timeouts.session_grace)
        if self.machine.session_request_id != request_id:
            return

        try:
            await self._send(jsonrpc.make_request(request_id, jsonrpc.METHOD_SESSION_NEW, {
                "cwd": self.config.working_directory or os.getcwd(),
                "mcpServers": [],
            }))
        except TransportError as e:
            logger.warning(f"Could not request session: {e}")

    async def _send(self, message: Dict[str, Any]):
        if self.handle is None:
            raise TransportError("Agent process not started")
        logger.debug(f"Sending to agent: {message.get('method') or message.get('id')}")
        data = jsonrpc.encode(message)
        if self.transport.pty_wrapper:
            self.framer.expect_echo(data)
        await self.handle.write(data)

    def _on_stdout(self, chunk: bytes):
        for message in self.framer.feed(chunk):
            self._dispatch(message)

    def _dispatch(self, message: Dict[str, Any]):
        """Route one inbound message"""
        if jsonrpc.is_response(message):
            if not self.machine.handle_response(message):
                logger.debug(f"Unmatched response from agent: id={message.get('id')}")
            return

        method = message.get("method")

        if jsonrpc.is_request(message):
            if method in jsonrpc.OUTBOUND_METHODS:
                # Our own request echoed back by the terminal layer
                logger.debug(f"Ignoring echoed {method} request")
                return
            if method == jsonrpc.METHOD_INITIALIZE:
                self.machine.mark_initialized()
            self._spawn(self._serve_request(message))
            return

        if jsonrpc.is_notification(message):
            if method == jsonrpc.METHOD_SESSION_UPDATE:
                self._handle_session_update(message.get("params") or {})
            else:
                logger.debug(f"Ignoring notification: {method}")
            return

        logger.debug(f"Ignoring non-protocol message: {str(message)[:200]}")

    def _handle_session_update(self, params: Dict[str, Any]):
        update = params.get("update") or {}
        if update.get("sessionUpdate") == "agent_message_chunk":
            content = update.get("content") or {}
            text = content.get("text") if isinstance(content, dict) else None
            if text:
                self._update_chunks.append(text)

        self._publish(SessionUpdateEvent(
            engine=self.name,
            session_id=params.get("sessionId"),
            update=update
        ))

    async def _serve_request(self, message: Dict[str, Any]):
        """Answer an agent-initiated request"""
        request_id = message.get("id")
        method = message.get("method")

        try:
            if method == jsonrpc.METHOD_INITIALIZE:
                response = jsonrpc.make_response(request_id, self.capabilities())
                logger.info("Agent handshake complete")
            elif method == jsonrpc.METHOD_PING:
                response = jsonrpc.make_response(request_id, {})
            elif method == jsonrpc.METHOD_TOOLS_LIST:
                response = jsonrpc.make_response(request_id, {
                    "tools": [d.advertise() for d in self.registry.definitions()]
                })
            else:
                resolved = jsonrpc.resolve_tool_call(message)
                if resolved is None:
                    response = jsonrpc.make_error(request_id, jsonrpc.METHOD_NOT_FOUND, f"Unknown method: '{method}'")
                else:
                    tool_name, params = resolved
                    result = await self._invoke_tool(request_id, tool_name, params)
                    response = jsonrpc.make_response(request_id, result)
        except ToolInvocationError as e:
            response = jsonrpc.make_error(request_id, e.code, str(e))
        except Exception as e:
            logger.error(f"Error serving {method}: {e}", exc_info=True)
            response = jsonrpc.make_error(request_id, jsonrpc.INTERNAL_ERROR, str(e))

        try:
            await self._send(response)
        except TransportError as e:
            logger.warning(f"Could not answer {method} request {request_id}: {e}")

    async def _invoke_tool(self, request_id: Any, tool_name: str, params: Dict[str, Any]) -> Any:
        summary = ToolCallSummary(request_id=request_id, tool_name=tool_name, params=params, status="executing")
        self._turn_calls.append(summary)

        try:
            result = await self.guard.invoke(tool_name, params)
        except WhitelistViolation as e:
            summary.status = "rejected"
            summary.error = str(e)
            self._publish(ToolRejectedEvent(engine=self.name, tool_name=tool_name, reason=str(e)))
            raise
        except ToolInvocationError as e:
            summary.status = "failed"
            summary.error = str(e)
            self._publish(ToolCallEvent(engine=self.name, tool_name=tool_name, arguments=params, status="failed"))
            raise

        summary.status = "completed"
        self._publish(ToolCallEvent(engine=self.name, tool_name=tool_name, arguments=params, status="completed"))
        return result

    def _on_stderr(self, chunk: bytes):
        for line in self._stderr_lines.feed_lines(chunk):
            self._stderr_line(line)

    def _stderr_line(self, line: str):
        logger.debug(f"Agent stderr: {line}")
        self._publish(StderrEvent(engine=self.name, line=line))

    def _on_exit(self, exit_code: Optional[int], generation: int):
        if generation != self._generation:
            return

        # A final record without a trailing newline still counts
        for message in self.framer.flush():
            self._dispatch(message)
        for line in self._stderr_lines.flush_lines():
            self._stderr_line(line)
        telemetry.log_metric("framer.dropped_lines", self.framer.dropped, engine=self.name)

        stderr = self.handle.stderr_text if self.handle else ""
        error = TransportError(
            f"Agent process exited (code={exit_code})",
            exit_code=exit_code,
            stderr=stderr
        )
        self.machine.close(error)
        self.framer.reset()
        telemetry.session_event("closed", exit_code=exit_code)
        self._publish(ProcessExitEvent(engine=self.name, exit_code=exit_code))

    def _build_result(self, outcome: RpcOutcome) -> EngineResult:
        result = outcome.result if isinstance(outcome.result, dict) else {}

        text = "".join(self._update_chunks)
        if not text:
            text = _result_text(result)

        return EngineResult(
            text=text,
            tool_calls=list(self._turn_calls),
            logs=self.guard.recent_calls(),
            rejected_logs=self.guard.recent_rejections(),
            timeout=outcome.timeout,
            error=outcome.error,
            stop_reason=result.get("stopReason")
        )

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _publish(self, event: Event):
        if self.bus is not None:
            self.bus.publish_nowait(event)


def _result_text(result: Dict[str, Any]) -> str:
    """Text carried directly in a prompt result"""
    if isinstance(result.get("text"), str):
        return result["text"]

    parts = []
    for item in result.get("content") or []:
        if isinstance(item, dict) and item.get("type") == "text" and item.get("text"):
            parts.append(item["text"])
    return "\n".join(parts)
