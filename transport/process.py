"""Child process transport for agent CLIs"""
import asyncio
import logging
import os
import shlex
import shutil
import sys
from typing import Callable, Dict, List, Optional

from core.errors import TransportError

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[bytes], None]
ExitCallback = Callable[[Optional[int]], None]

# Keeps agent output line-oriented and free of ANSI escapes
NON_INTERACTIVE_ENV = {
    "TERM": "dumb",
    "NO_COLOR": "1",
    "FORCE_COLOR": "0",
}

STDERR_TAIL_BYTES = 8192
READ_CHUNK_BYTES = 65536

# Raw mode with echo off on the pty slave: nothing we write comes back on
# stdout, and long lines bypass the canonical-mode line limit
TERMINAL_SETUP = "stty raw -echo 2>/dev/null"


def wrap_in_terminal(argv: List[str]) -> List[str]:
    """Run argv under script(1) so the agent sees a dumb, non-echoing terminal"""
    script = shutil.which("script")
    if not script:
        logger.warning("script(1) not found, spawning agent without terminal emulation")
        return list(argv)

    inner = ["/bin/sh", "-c", f"{TERMINAL_SETUP}; exec {shlex.join(argv)}"]
    if sys.platform == "darwin":
        return [script, "-q", "/dev/null", *inner]
    return [script, "-q", "-f", "-e", "-c", shlex.join(inner), "/dev/null"]


class ProcessHandle:
    """A spawned agent process with pumped stdout/stderr"""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        command: List[str],
        on_stdout: Optional[ChunkCallback] = None,
        on_stderr: Optional[ChunkCallback] = None,
        on_exit: Optional[ExitCallback] = None,
        terminate_timeout: float = 5.0
    ):
        self.process = process
        self.command = command
        self.on_stdout = on_stdout
        self.on_stderr = on_stderr
        self.on_exit = on_exit
        self.terminate_timeout = terminate_timeout
        self.exit_code: Optional[int] = None
        self._killed = False
        self._stderr_tail = bytearray()
        self._stdout_task = asyncio.create_task(self._pump(process.stdout, self._dispatch_stdout))
        self._stderr_task = asyncio.create_task(self._pump(process.stderr, self._dispatch_stderr))
        self._monitor_task = asyncio.create_task(self._monitor())

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def stderr_text(self) -> str:
        """Tail of everything the agent wrote to stderr"""
        return self._stderr_tail.decode("utf-8", errors="replace")

    def is_alive(self) -> bool:
        return self.process.returncode is None

    async def write(self, data: bytes) -> None:
        """Write raw bytes to the agent's stdin"""
        if not self.is_alive() or not self.process.stdin:
            raise TransportError("Agent process is not running", exit_code=self.process.returncode)

        try:
            self.process.stdin.write(data)
            await self.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise TransportError(
                f"Agent process closed its input: {e}",
                exit_code=self.process.returncode,
                stderr=self.stderr_text
            ) from e

    async def wait(self) -> Optional[int]:
        """Wait for exit and drained pipes; None when we killed it"""
        await asyncio.shield(self._monitor_task)
        return self.exit_code

    async def terminate(self) -> None:
        """Stop the process; no-op once it has exited"""
        if not self.is_alive():
            await self.wait()
            return

        self._killed = True
        logger.info(f"Terminating agent process: PID {self.pid}")

        if self.process.stdin and not self.process.stdin.is_closing():
            self.process.stdin.close()

        try:
            self.process.terminate()
            await asyncio.wait_for(self.process.wait(), timeout=self.terminate_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Agent process {self.pid} didn't terminate, killing")
            self.process.kill()
            await self.process.wait()
        except ProcessLookupError:
            pass

        await self.wait()

    def _dispatch_stdout(self, chunk: bytes):
        if self.on_stdout:
            self.on_stdout(chunk)

    def _dispatch_stderr(self, chunk: bytes):
        self._stderr_tail.extend(chunk)
        if len(self._stderr_tail) > STDERR_TAIL_BYTES:
            del self._stderr_tail[:-STDERR_TAIL_BYTES]
        if self.on_stderr:
            self.on_stderr(chunk)

    async def _pump(self, stream: Optional[asyncio.StreamReader], dispatch: ChunkCallback):
        """Forward raw chunks until EOF"""
        if stream is None:
            return

        while True:
            try:
                chunk = await stream.read(READ_CHUNK_BYTES)
            except (ConnectionResetError, BrokenPipeError):
                break
            if not chunk:
                break
            try:
                dispatch(chunk)
            except Exception as e:
                logger.error(f"Error handling agent output: {e}", exc_info=True)

    async def _monitor(self):
        returncode = await self.process.wait()
        await asyncio.gather(self._stdout_task, self._stderr_task, return_exceptions=True)

        self.exit_code = None if self._killed else returncode
        logger.info(f"Agent process {self.pid} exited: code={self.exit_code}")

        if self.on_exit:
            try:
                self.on_exit(self.exit_code)
            except Exception as e:
                logger.error(f"Error in exit handler: {e}", exc_info=True)


class ProcessTransport:
    """Launches the agent CLI with piped stdin/stdout/stderr"""

    def __init__(self, pty_wrapper: bool = True, terminate_timeout: float = 5.0):
        self.pty_wrapper = pty_wrapper
        self.terminate_timeout = terminate_timeout
        self.handle: Optional[ProcessHandle] = None

    def is_alive(self) -> bool:
        return self.handle is not None and self.handle.is_alive()

    async def launch(
        self,
        command: str,
        args: List[str],
        working_directory: Optional[str] = None,
        env_overrides: Optional[Dict[str, str]] = None,
        on_stdout: Optional[ChunkCallback] = None,
        on_stderr: Optional[ChunkCallback] = None,
        on_exit: Optional[ExitCallback] = None
    ) -> ProcessHandle:
        """Spawn the agent; raises TransportError if it cannot start"""
        if self.is_alive():
            logger.warning("Transport already running, stopping first")
            await self.terminate()

        argv = [command, *args]
        if self.pty_wrapper:
            argv = wrap_in_terminal(argv)

        env = {
            **os.environ,
            **NON_INTERACTIVE_ENV,
            **(env_overrides or {})
        }

        logger.info(f"Starting agent process: {shlex.join(argv)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=working_directory,
                env=env
            )
        except OSError as e:
            logger.error(f"Failed to start agent process {command}: {e}")
            raise TransportError(f"Failed to start agent process '{command}': {e}") from e

        logger.info(f"Agent process started: PID {process.pid}")
        self.handle = ProcessHandle(
            process,
            argv,
            on_stdout=on_stdout,
            on_stderr=on_stderr,
            on_exit=on_exit,
            terminate_timeout=self.terminate_timeout
        )
        return self.handle

    async def terminate(self) -> None:
        """Idempotent: never-started or already-exited is a no-op"""
        if self.handle is None:
            return
        await self.handle.terminate()
